"""The install pipeline: from a package identifier to a linked executable."""

from __future__ import annotations

import hashlib
import os
import shutil
import stat
import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path

from kegbin.core.errors import (
    BinaryNameConflict,
    ChecksumMismatch,
    ManifestError,
    NoVersionsAvailable,
    StoreError,
)
from kegbin.core.logging import get_logger
from kegbin.core.models import CaskRecord, DownloadTarget, Formula, HostPlatform
from kegbin.core.store import Store
from kegbin.formula.manifest import parse_formula, stamp_manifest
from kegbin.formula.resolver import FormulaResolver, get_current_download_url
from kegbin.formula.versions import select_version
from kegbin.install import extractor, linker
from kegbin.install.hooks import run_hook
from kegbin.providers.base import FileDownloader, RepositoryClient

log = get_logger(__name__)


class InstallStage(Enum):
    """Steps of an install, in execution order."""

    PENDING = "pending"
    RESOLVING_FORMULA = "resolving_formula"
    CHECKING_CONFLICTS = "checking_conflicts"
    RUNNING_PRE_HOOK = "running_pre_hook"
    SELECTING_VERSION = "selecting_version"
    DOWNLOADING = "downloading"
    VERIFYING_CHECKSUM = "verifying_checksum"
    EXTRACTING = "extracting"
    LINKING = "linking"
    PERSISTING_METADATA = "persisting_metadata"
    RUNNING_POST_HOOK = "running_post_hook"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallResult:
    """What an install produced."""

    formula: Formula
    version: str
    executable: Path
    link: Path


def sha256_file(path: Path, chunk_size: int = 65536) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(path: Path, expected: str) -> None:
    """Compare the SHA-256 of ``path`` with ``expected``, ignoring case.

    On mismatch the file is deleted before ChecksumMismatch is raised.
    """
    actual = sha256_file(path)
    if actual.lower() == expected.strip().lower():
        return

    path.unlink(missing_ok=True)
    raise ChecksumMismatch(path=str(path), expected=expected, actual=actual)


def make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


class InstallPipeline:
    """Runs the install stages in order for one package.

    ``stage`` tracks progress; when a stage raises it is set to FAILED,
    ``failed_stage`` keeps the stage that broke and the exception
    propagates unchanged. Nothing is retried.
    """

    def __init__(
        self,
        store: Store,
        host: HostPlatform,
        client: RepositoryClient,
        downloader: FileDownloader,
    ) -> None:
        self.store = store
        self.host = host
        self.downloader = downloader
        self.resolver = FormulaResolver(store, client)
        self.stage = InstallStage.PENDING
        self.failed_stage: InstallStage | None = None
        self.formula: Formula | None = None

    def _enter(self, stage: InstallStage, **context) -> None:
        self.stage = stage
        log.info("install_stage", stage=stage.value, **context)

    async def run(
        self,
        package: str | None = None,
        version: str | None = None,
        manifest: bytes | None = None,
    ) -> InstallResult:
        """Install ``package``, or the formula given as ``manifest`` bytes.

        Args:
            package: Repository URL or bare name of the package.
            version: Optional version or range expression.
            manifest: Raw Cask.toml content read from a pipe. Takes
                precedence over ``package``.

        Returns:
            The installed formula, version, executable path and link path.
        """
        if package is None and manifest is None:
            raise ValueError("Either a package or a manifest is required")

        start = time.perf_counter()
        self.stage = InstallStage.PENDING
        self.failed_stage = None
        self.formula = None

        try:
            result = await self._run(package, version, manifest)
        except Exception as e:
            self.failed_stage = self.stage
            self.stage = InstallStage.FAILED
            log.error(
                "install_failed",
                package=package,
                stage=self.failed_stage.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        self._enter(InstallStage.DONE, package=result.formula.package.name)
        log.info(
            "install_complete",
            package=result.formula.package.name,
            version=result.version,
            duration_ms=int((time.perf_counter() - start) * 1000)
        )
        return result

    async def _run(
        self, package: str | None, version: str | None, manifest: bytes | None
    ) -> InstallResult:
        self._enter(InstallStage.RESOLVING_FORMULA, package=package)
        formula = await self._resolve(package, manifest)
        self.formula = formula
        name = formula.package.name

        self._enter(InstallStage.CHECKING_CONFLICTS, package=name)
        self._check_conflicts(formula)

        self.store.init()
        self.store.init_package(name)
        package_dir = self.store.package_dir(name)
        repository_dir = self.store.package_repository_dir(name)
        hook_cwd = repository_dir if repository_dir.is_dir() else package_dir

        self._enter(InstallStage.RUNNING_PRE_HOOK, package=name)
        await run_hook(formula.hook, "preinstall", hook_cwd, self.host, package=name)

        self._enter(InstallStage.SELECTING_VERSION, package=name, constraint=version)
        selected = await self._select_version(formula, version)

        target = get_current_download_url(formula, selected, self.host)

        self._enter(InstallStage.DOWNLOADING, package=name, version=selected, url=target.url)
        archive = self.store.package_version_dir(name) / f"{selected}{target.extension}"
        self.downloader.download(target.url, archive)

        if target.checksum:
            self._enter(InstallStage.VERIFYING_CHECKSUM, package=name)
            verify_checksum(archive, target.checksum)

        self._enter(InstallStage.EXTRACTING, package=name, archive=archive.name)
        executable = self._unpack(formula, target, archive)

        self._enter(InstallStage.LINKING, package=name)
        link = linker.expose(
            executable,
            self.store.bin_dir() / formula.package.bin,
            name,
            self.host,
        )

        self._enter(InstallStage.PERSISTING_METADATA, package=name)
        formula = self._persist(formula, selected)

        self._enter(InstallStage.RUNNING_POST_HOOK, package=name)
        await run_hook(formula.hook, "postinstall", hook_cwd, self.host, package=name)

        return InstallResult(formula=formula, version=selected, executable=executable, link=link)

    async def _resolve(self, package: str | None, manifest: bytes | None) -> Formula:
        if manifest is None:
            return await self.resolver.fetch(package, temp=False)

        formula = parse_formula(manifest, repository="")
        if formula.cask is not None:
            raise ManifestError(
                "The formula is a generated install record and can not be installed",
                context={"field": "cask"}
            )
        return formula

    def _check_conflicts(self, formula: Formula) -> None:
        for installed in self.store.list_formula():
            if installed.package.name == formula.package.name:
                continue
            if installed.package.bin == formula.package.bin:
                raise BinaryNameConflict(
                    bin=formula.package.bin,
                    owner=installed.package.name,
                    context={"package": formula.package.name}
                )

    async def _select_version(self, formula: Formula, constraint: str | None) -> str:
        versions = await self.resolver.get_versions(formula)
        if not versions:
            raise NoVersionsAvailable(package=formula.package.name)

        selected = select_version(versions, constraint)
        if selected is None:
            raise NoVersionsAvailable(
                f"Can not find a version of '{formula.package.name}' matching '{constraint}'",
                package=formula.package.name,
                constraint=constraint,
                context={"available": ", ".join(versions[:10])}
            )

        log.info("version_selected", package=formula.package.name, version=selected, constraint=constraint)
        return selected

    def _unpack(self, formula: Formula, target: DownloadTarget, archive: Path) -> Path:
        bin_dir = self.store.package_bin_dir(formula.package.name)
        executable_name = self.host.executable_name(formula.package.bin)

        if not target.executable:
            return extractor.extract(archive, bin_dir, executable_name, target.path)

        output = bin_dir / executable_name
        try:
            bin_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(archive, output)
            if not self.host.is_windows:
                make_executable(output)
        except OSError as e:
            raise StoreError(
                f"Can not install executable: {e}",
                path=str(output),
                operation="copy"
            ) from e
        return output

    def _persist(self, formula: Formula, version: str) -> Formula:
        record = CaskRecord(
            name=formula.package.name,
            created_at=datetime.now().astimezone().isoformat(),
            version=version,
            repository=formula.repository,
        )
        path = self.store.package_manifest(formula.package.name)
        content = stamp_manifest(record, formula.file_content)
        temp_file = path.with_name(path.name + ".tmp")

        try:
            temp_file.write_bytes(content)
            os.replace(temp_file, path)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise StoreError(
                f"Can not write formula: {e}",
                path=str(path),
                operation="persist"
            ) from e

        return replace(formula, cask=record, filepath=path)
