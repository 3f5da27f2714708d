"""Operations on installed packages: uninstall, upgrade, relink and clean."""

from __future__ import annotations

import shutil
import time
from pathlib import Path
from typing import List, NamedTuple

from kegbin.analysis.status import is_newer
from kegbin.core.errors import (
    ManifestError,
    NotUpgradeable,
    NoVersionsAvailable,
    PackageNotInstalled,
    StoreError,
)
from kegbin.core.logging import get_logger
from kegbin.core.models import Formula, HostPlatform
from kegbin.core.store import Store
from kegbin.formula.manifest import MANIFEST_FILENAME, read_formula
from kegbin.formula.resolver import KNOWN_EXTENSIONS
from kegbin.install import linker
from kegbin.install.pipeline import InstallPipeline

log = get_logger(__name__)

ARCHIVE_EXTENSIONS = KNOWN_EXTENSIONS + (".exe",)


class UpdateInfo(NamedTuple):
    """An installed package with a newer release available."""

    name: str
    current: str
    latest: str


def _installed(store: Store, name_or_bin: str) -> Formula:
    formula = store.find_installed(name_or_bin)
    if formula is None:
        raise PackageNotInstalled(package=name_or_bin)
    return formula


def _rmtree(path: Path, operation: str) -> None:
    try:
        shutil.rmtree(path)
    except OSError as e:
        raise StoreError(f"Can not remove '{path}': {e}", path=str(path), operation=operation) from e


def _unlink(path: Path, operation: str) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        raise StoreError(f"Can not remove '{path}': {e}", path=str(path), operation=operation) from e


def uninstall(store: Store, name_or_bin: str, host: HostPlatform) -> Formula:
    """Remove an installed package and its link.

    Args:
        store: The package store.
        name_or_bin: Package name, or the executable name it provides.
        host: Decides whether a symlink or shims are removed.

    Returns:
        The formula of the removed package.

    Raises:
        PackageNotInstalled: If nothing installed matches.
    """
    formula = _installed(store, name_or_bin)
    name = formula.package.name

    _rmtree(store.package_dir(name), "uninstall")
    linker.unexpose(store.bin_dir() / formula.package.bin, host)

    log.info("package_uninstalled", package=name, bin=formula.package.bin)
    return formula


async def upgrade(
    pipeline: InstallPipeline, name_or_bin: str, check_only: bool = False
) -> tuple[UpdateInfo, bool]:
    """Install the newest release of an installed package if it is newer.

    The formula is fetched again from the repository recorded at install
    time, so manifest changes since then are picked up.

    Returns:
        The versions compared, and whether an install happened.

    Raises:
        PackageNotInstalled: If nothing installed matches.
        NotUpgradeable: If the package was installed from a piped manifest.
        NoVersionsAvailable: If the remote lists no releases.
    """
    store = pipeline.store
    installed = _installed(store, name_or_bin)
    name = installed.package.name

    if installed.cask is None or not installed.cask.repository:
        raise NotUpgradeable(
            f"The package '{name}' was installed from a local formula and can not be upgraded",
            context={"package": name}
        )

    current = installed.cask.version
    repository = installed.cask.repository

    remote = await pipeline.resolver.fetch(repository, temp=True)
    versions = await pipeline.resolver.get_versions(remote)
    if not versions:
        raise NoVersionsAvailable(package=name)

    info = UpdateInfo(name=name, current=current, latest=versions[0])
    if not is_newer(info.latest, current):
        log.info("package_up_to_date", package=name, version=current)
        return info, False

    if check_only:
        log.info("package_update_available", package=name, current=current, latest=info.latest)
        return info, False

    await pipeline.run(package=repository, version=info.latest)
    log.info("package_upgraded", package=name, previous=current, version=info.latest)
    return info, True


async def check_updates(pipeline: InstallPipeline, check_only: bool = False) -> List[UpdateInfo]:
    """Find installed packages with newer releases and upgrade them.

    Packages installed from a piped manifest are skipped.

    Returns:
        Every package found outdated, upgraded or not.
    """
    start = time.perf_counter()
    updates: List[UpdateInfo] = []

    for formula in pipeline.store.list_formula():
        if formula.cask is None or not formula.cask.repository:
            log.debug("update_check_skipped", package=formula.package.name)
            continue

        versions = await pipeline.resolver.get_versions(formula)
        if not versions:
            continue
        if is_newer(versions[0], formula.cask.version):
            updates.append(UpdateInfo(formula.package.name, formula.cask.version, versions[0]))

    log.info(
        "update_check_complete",
        outdated=len(updates),
        duration_ms=int((time.perf_counter() - start) * 1000)
    )

    if not check_only:
        for update in updates:
            formula = pipeline.store.find_installed(update.name)
            await pipeline.run(package=formula.cask.repository, version=update.latest)

    return updates


def relink(store: Store, host: HostPlatform) -> List[Path]:
    """Expose the executable of every installed package again."""
    links: List[Path] = []
    for formula in store.list_formula():
        name = formula.package.name
        executable = store.package_bin_dir(name) / host.executable_name(formula.package.bin)
        links.append(linker.expose(executable, store.bin_dir() / formula.package.bin, name, host))
    return links


def _is_retained_archive(filename: str, version: str) -> bool:
    """Whether ``filename`` is the download of exactly ``version``."""
    if filename.endswith(".part"):
        return False
    for extension in ARCHIVE_EXTENSIONS:
        if filename.endswith(extension):
            return filename[: -len(extension)] == version

    # a numeric suffix belongs to the version, not an extension
    suffix = Path(filename).suffix
    if suffix[1:] and not suffix[1:].isdigit():
        return filename[: -len(suffix)] == version
    return filename == version


def clean(store: Store, host: HostPlatform) -> List[Path]:
    """Free disk space in the store.

    Removes downloaded archives other than the installed version's,
    package folders of incomplete installs and links or shims whose
    executable no longer exists.

    Returns:
        The removed paths.
    """
    removed: List[Path] = []
    formula_dir = store.formula_dir()

    if formula_dir.is_dir():
        for package_dir in sorted(formula_dir.iterdir()):
            if not package_dir.is_dir():
                continue

            manifest = package_dir / MANIFEST_FILENAME
            if not manifest.exists():
                _rmtree(package_dir, "clean")
                removed.append(package_dir)
                continue

            try:
                formula = read_formula(manifest)
            except ManifestError as e:
                log.warning("clean_unreadable_manifest", path=str(manifest), error=str(e))
                continue
            if formula.cask is None:
                continue

            version_dir = package_dir / "version"
            if not version_dir.is_dir():
                continue
            for archive in sorted(version_dir.iterdir()):
                if archive.is_file() and not _is_retained_archive(archive.name, formula.cask.version):
                    _unlink(archive, "clean")
                    removed.append(archive)

    bin_dir = store.bin_dir()
    if bin_dir.is_dir():
        for entry in sorted(bin_dir.iterdir()):
            source = linker.link_source(entry)
            if source is not None and not source.exists():
                _unlink(entry, "clean")
                removed.append(entry)

    log.info("store_cleaned", removed=len(removed), family=host.family)
    return removed


def discard_incomplete(store: Store, package_name: str) -> bool:
    """Remove the package folder left by a failed first install.

    Folders holding a Cask.toml belong to a working install and are kept.
    Returns True if something was removed.
    """
    package_dir = store.package_dir(package_name)
    if not package_dir.is_dir() or store.package_manifest(package_name).exists():
        return False

    try:
        shutil.rmtree(package_dir)
    except OSError as e:
        log.warning("discard_incomplete_failed", package=package_name, path=str(package_dir), error=str(e))
        return False

    log.info("incomplete_install_discarded", package=package_name)
    return True
