"""Locating, fetching and resolving formulas."""

from __future__ import annotations

import shutil
import tempfile
import time
from dataclasses import replace
from pathlib import Path
from typing import List
from urllib.parse import urlparse

from kegbin.core.errors import (
    InvalidPackageIdentifier,
    NotAFormula,
    RepositoryNotFound,
    UnsupportedPlatform,
)
from kegbin.core.logging import get_logger
from kegbin.core.models import DownloadTarget, Formula, HostPlatform
from kegbin.core.store import Store
from kegbin.formula.manifest import MANIFEST_FILENAME, read_formula
from kegbin.formula.versions import VersionResolver
from kegbin.providers.base import FORMULA_CLONE_OPTIONS, RepositoryClient

log = get_logger(__name__)

KNOWN_EXTENSIONS = (".tar.gz", ".tgz", ".tar.bz2", ".tar", ".zip")
DEFAULT_EXTENSION = ".tar.gz"
URL_SCHEMES = ("http", "https")


def formula_cask_url(package_name: str) -> str:
    """Conventional address of a dedicated formula repository."""
    return f"https://{package_name}-cask.git"


def formula_url(package_name: str) -> str:
    return f"https://{package_name}.git"


def render_url(template: str, name: str, bin: str, version: str) -> str:
    """Substitute ``{name}``, ``{bin}`` and ``{version}``; nothing else."""
    return (
        template.replace("{name}", name)
        .replace("{bin}", bin)
        .replace("{version}", version)
    )


def extension_from_url(url: str) -> str:
    """Sniff the container extension from the last path segment."""
    filename = urlparse(url).path.rsplit("/", 1)[-1]
    for ext in KNOWN_EXTENSIONS:
        if filename.endswith(ext):
            return ext
    return DEFAULT_EXTENSION


def get_current_download_url(
    formula: Formula, version: str, host: HostPlatform
) -> DownloadTarget:
    """Resolve the download for ``version`` on ``host``.

    Raises:
        UnsupportedPlatform: If the formula lists nothing for the host OS/arch.
    """
    target = formula.resource_for(host.os, host.arch)
    if target is None:
        raise UnsupportedPlatform(
            package=formula.package.name,
            os=host.os.value if host.os else host.system,
            arch=host.arch.value if host.arch else None,
        )

    url = render_url(target.url, formula.package.name, formula.package.bin, version)

    if target.extension is not None:
        extension = target.extension
    elif target.executable:
        extension = ".exe" if host.is_windows else ""
    else:
        extension = extension_from_url(url)

    return DownloadTarget(
        url=url,
        checksum=target.checksum,
        extension=extension,
        path=target.path or "/",
        executable=target.executable,
    )


class FormulaResolver:
    """Finds the repository of a package and reads its Cask.toml."""

    def __init__(self, store: Store, client: RepositoryClient) -> None:
        self.store = store
        self.client = client
        self.versions = VersionResolver(client)

    async def locate(self, package: str) -> str:
        """Return the repository URL holding the formula of ``package``.

        Raises:
            RepositoryNotFound: If an explicit URL does not exist.
            InvalidPackageIdentifier: If the URL scheme is not http(s).
            NotAFormula: If no conventional repository exists for a bare name.
        """
        scheme = urlparse(package).scheme
        if scheme:
            if scheme not in URL_SCHEMES:
                raise InvalidPackageIdentifier(
                    f"Not support the protocol '{scheme}' of package address",
                    context={"package": package}
                )
            if await self.client.exists(package):
                return package
            raise RepositoryNotFound(f"The package '{package}' does not exist", url=package)

        for url in (formula_cask_url(package), formula_url(package)):
            if await self.client.exists(url):
                return url

        log.warning("formula_repository_missing", package=package)
        raise NotAFormula(f"Can not fetch formula of package '{package}'", package=package)

    async def fetch(self, package: str, temp: bool = True) -> Formula:
        """Clone the formula repository of ``package`` and parse its manifest.

        Args:
            package: A http(s) repository URL or a bare name such as
                ``github.com/owner/tool``.
            temp: Discard the checkout afterwards. When False the checkout is
                kept as the package's ``repository/`` folder.

        Raises:
            RemoteUnavailable: If the repository can not be cloned.
            NotAFormula: If the repository has no Cask.toml.
            ManifestError: If the Cask.toml is malformed.
        """
        start = time.perf_counter()
        log.info("formula_fetch_start", package=package, temp=temp)

        url = await self.locate(package)
        workdir = Path(tempfile.mkdtemp(prefix="kegbin_formula_"))
        checkout = workdir / "repository"

        try:
            await self.client.clone(url, checkout, FORMULA_CLONE_OPTIONS)

            manifest = checkout / MANIFEST_FILENAME
            if not manifest.exists():
                log.warning("formula_manifest_missing", package=package, url=url)
                raise NotAFormula(package=package, context={"url": url})

            formula = read_formula(manifest, repository=url)

            if temp:
                formula = replace(formula, filepath=None)
            else:
                dest = self.store.package_repository_dir(formula.package.name)
                if dest.exists():
                    shutil.rmtree(dest)
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(checkout), str(dest))
                formula = replace(formula, filepath=dest / MANIFEST_FILENAME)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        log.info(
            "formula_fetch_complete",
            package=formula.package.name,
            url=url,
            duration_ms=int((time.perf_counter() - start) * 1000)
        )
        return formula

    async def get_versions(self, formula: Formula) -> List[str]:
        """Versions declared by the formula, else the repository's tags."""
        if formula.package.versions is not None:
            return list(formula.package.versions)
        return await self.versions.list_versions(formula.package.repository)
