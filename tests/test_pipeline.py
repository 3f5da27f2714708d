"""Tests for the install pipeline."""

from __future__ import annotations

import asyncio
import hashlib
import os

import pytest

from kegbin.core.errors import (
    BinaryNameConflict,
    ChecksumMismatch,
    HookFailed,
    ManifestError,
    NoVersionsAvailable,
    UnsupportedPlatform,
)
from kegbin.formula.manifest import CASK_HEADER, read_formula
from kegbin.install.linker import batch_shim_path
from kegbin.install.manage import uninstall
from kegbin.install.pipeline import InstallPipeline, InstallStage

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX symlinks and modes")

BASE_URL = "https://downloads.example.com"


def make_manifest(
    name: str = "foo",
    bin: str = "foo",
    versions: tuple[str, ...] | None = ("1.0.0",),
    platform: str = "linux",
    checksum: str | None = None,
    executable: bool = False,
    extra: str = "",
) -> bytes:
    lines = [
        "[package]",
        f'name = "{name}"',
        f'bin = "{bin}"',
        f'repository = "https://github.com/example/{name}"',
        f'description = "{name} tool"',
    ]
    if versions is not None:
        lines.append("versions = [" + ", ".join(f'"{v}"' for v in versions) + "]")

    suffix = "" if executable else ".tar.gz"
    lines += ["", f"[{platform}.x86_64]", f'url = "{BASE_URL}/{{name}}-{{version}}{suffix}"']
    if checksum:
        lines.append(f'checksum = "{checksum}"')
    if executable:
        lines.append("executable = true")
    return ("\n".join(lines) + "\n" + extra).encode()


@pytest.fixture
def pipeline_for(store, fake_client, fake_downloader):
    def build(host):
        return InstallPipeline(store, host, fake_client, fake_downloader)
    return build


def serve(fake_downloader, archive_bytes, name, version, entry, content=b"binary"):
    payload = archive_bytes({entry: content})
    fake_downloader.files[f"{BASE_URL}/{name}-{version}.tar.gz"] = payload
    return payload


class TestInstall:
    """Successful installs."""

    @posix_only
    def test_piped_manifest_on_posix(self, store, pipeline_for, linux_host, fake_client, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo")
        pipeline = pipeline_for(linux_host)

        result = asyncio.run(pipeline.run(manifest=make_manifest()))

        assert result.version == "1.0.0"
        assert result.executable == store.package_bin_dir("foo") / "foo"
        assert result.executable.read_bytes() == b"binary"
        assert result.link == store.bin_dir() / "foo"
        assert result.link.is_symlink()
        assert pipeline.stage is InstallStage.DONE
        assert fake_client.calls == []

        archive = store.package_version_dir("foo") / "1.0.0.tar.gz"
        assert archive.is_file()

    def test_persisted_manifest(self, store, pipeline_for, windows_host, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo.exe")
        manifest = make_manifest(platform="windows")

        asyncio.run(pipeline_for(windows_host).run(manifest=manifest))

        path = store.package_manifest("foo")
        content = path.read_bytes()
        assert content.startswith(CASK_HEADER.encode())
        assert content.endswith(manifest)

        assert not path.with_name("Cask.toml.tmp").exists()

        installed = read_formula(path)
        assert installed.cask.name == "foo"
        assert installed.cask.version == "1.0.0"
        assert installed.cask.repository == ""
        assert installed.cask.created_at

    def test_windows_shims(self, store, pipeline_for, windows_host, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo.exe")

        result = asyncio.run(pipeline_for(windows_host).run(manifest=make_manifest(platform="windows")))

        assert result.executable.name == "foo.exe"
        assert result.link == store.bin_dir() / "foo"
        assert result.link.is_file()
        assert batch_shim_path(result.link).is_file()

    def test_version_range(self, store, pipeline_for, windows_host, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.5.0", "foo.exe")
        manifest = make_manifest(platform="windows", versions=("2.0.0", "1.5.0", "1.0.0"))

        result = asyncio.run(pipeline_for(windows_host).run(manifest=manifest, version="^1.0"))

        assert result.version == "1.5.0"
        assert fake_downloader.calls[0][0] == f"{BASE_URL}/foo-1.5.0.tar.gz"

    def test_checksum_match_ignores_case(self, store, pipeline_for, windows_host, fake_downloader, archive_bytes):
        payload = serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo.exe")
        checksum = hashlib.sha256(payload).hexdigest().upper()

        result = asyncio.run(
            pipeline_for(windows_host).run(manifest=make_manifest(platform="windows", checksum=checksum))
        )

        assert result.version == "1.0.0"

    @posix_only
    def test_executable_target(self, store, pipeline_for, linux_host, fake_downloader):
        fake_downloader.files[f"{BASE_URL}/foo-1.0.0"] = b"#!/bin/sh\necho foo\n"

        result = asyncio.run(pipeline_for(linux_host).run(manifest=make_manifest(executable=True)))

        assert result.executable.read_bytes() == b"#!/bin/sh\necho foo\n"
        assert os.access(result.executable, os.X_OK)
        assert (store.package_version_dir("foo") / "1.0.0").is_file()

    def test_remote_formula(self, store, pipeline_for, windows_host, fake_client, fake_downloader, archive_bytes):
        cask_url = "https://foo-cask.git"
        fake_client.repos[cask_url] = {"Cask.toml": make_manifest(platform="windows")}
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo.exe")
        pipeline = pipeline_for(windows_host)

        result = asyncio.run(pipeline.run(package="foo"))

        assert result.formula.cask.repository == cask_url
        assert store.package_repository_dir("foo").is_dir()
        assert pipeline.formula.package.name == "foo"

    def test_reinstall_same_package(self, store, pipeline_for, windows_host, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo.exe")
        serve(fake_downloader, archive_bytes, "foo", "1.1.0", "foo.exe", content=b"newer")
        pipeline = pipeline_for(windows_host)

        asyncio.run(pipeline.run(manifest=make_manifest(platform="windows")))
        result = asyncio.run(
            pipeline.run(manifest=make_manifest(platform="windows", versions=("1.1.0", "1.0.0")))
        )

        assert result.version == "1.1.0"
        assert result.executable.read_bytes() == b"newer"
        assert read_formula(store.package_manifest("foo")).cask.version == "1.1.0"


    def test_truncated_manifest_does_not_block_other_installs(
        self, store, pipeline_for, windows_host, fake_downloader, archive_bytes
    ):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo.exe")
        serve(fake_downloader, archive_bytes, "baz", "1.0.0", "baz.exe")
        pipeline = pipeline_for(windows_host)
        asyncio.run(pipeline.run(manifest=make_manifest(platform="windows")))
        manifest = store.package_manifest("foo")
        manifest.write_bytes(manifest.read_bytes()[:40])

        result = asyncio.run(pipeline.run(manifest=make_manifest(name="baz", bin="baz", platform="windows")))

        assert result.formula.package.name == "baz"


class TestFailures:
    """Every failure is reported with the stage it happened in."""

    def test_binary_name_conflict_before_network(
        self, store, pipeline_for, windows_host, fake_client, fake_downloader, archive_bytes
    ):
        serve(fake_downloader, archive_bytes, "bar", "1.0.0", "foo.exe")
        pipeline = pipeline_for(windows_host)
        asyncio.run(pipeline.run(manifest=make_manifest(name="bar", bin="foo", platform="windows")))
        downloads = len(fake_downloader.calls)

        with pytest.raises(BinaryNameConflict) as exc_info:
            asyncio.run(pipeline.run(manifest=make_manifest(name="foo", bin="foo", platform="windows")))

        assert exc_info.value.context["owner"] == "bar"
        assert pipeline.stage is InstallStage.FAILED
        assert pipeline.failed_stage is InstallStage.CHECKING_CONFLICTS
        assert len(fake_downloader.calls) == downloads
        assert fake_client.calls == []
        assert not store.package_dir("foo").exists()

    def test_checksum_mismatch_deletes_download(self, store, pipeline_for, windows_host, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo.exe")
        pipeline = pipeline_for(windows_host)

        with pytest.raises(ChecksumMismatch):
            asyncio.run(pipeline.run(manifest=make_manifest(platform="windows", checksum="00" * 32)))

        assert pipeline.failed_stage is InstallStage.VERIFYING_CHECKSUM
        assert not (store.package_version_dir("foo") / "1.0.0.tar.gz").exists()
        assert not store.package_manifest("foo").exists()

    def test_no_matching_version(self, pipeline_for, windows_host):
        pipeline = pipeline_for(windows_host)

        with pytest.raises(NoVersionsAvailable) as exc_info:
            asyncio.run(pipeline.run(manifest=make_manifest(platform="windows"), version="^2.0"))

        assert exc_info.value.context["constraint"] == "^2.0"
        assert pipeline.failed_stage is InstallStage.SELECTING_VERSION

    def test_no_versions(self, pipeline_for, windows_host):
        with pytest.raises(NoVersionsAvailable):
            asyncio.run(pipeline_for(windows_host).run(manifest=make_manifest(platform="windows", versions=())))

    def test_unsupported_platform(self, pipeline_for, linux_host):
        with pytest.raises(UnsupportedPlatform):
            asyncio.run(pipeline_for(linux_host).run(manifest=make_manifest(platform="darwin")))

    def test_piped_install_record_is_rejected(self, pipeline_for, windows_host):
        manifest = make_manifest(platform="windows", extra=(
            '\n[cask]\nname = "foo"\ncreated_at = "now"\nversion = "1.0.0"\nrepository = ""\n'
        ))

        with pytest.raises(ManifestError):
            asyncio.run(pipeline_for(windows_host).run(manifest=manifest))

    def test_bin_outside_the_store_is_rejected(self, store, pipeline_for, linux_host, fake_downloader):
        pipeline = pipeline_for(linux_host)

        with pytest.raises(ManifestError):
            asyncio.run(pipeline.run(manifest=make_manifest(bin="../../../escaped")))

        assert pipeline.failed_stage is InstallStage.RESOLVING_FORMULA
        assert fake_downloader.calls == []
        assert not (store.root_dir() / "escaped").exists()

    def test_requires_package_or_manifest(self, pipeline_for, windows_host):
        with pytest.raises(ValueError):
            asyncio.run(pipeline_for(windows_host).run())


@posix_only
class TestHooks:
    """Hooks run around the core steps."""

    HOOKS = (
        '\n[hook.unix.sh]\n'
        'preinstall = "echo pre > pre.txt"\n'
        'postinstall = "test -f Cask.toml && echo post > post.txt"\n'
    )

    def test_hooks_run_in_package_dir(self, store, pipeline_for, linux_host, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo")

        asyncio.run(pipeline_for(linux_host).run(manifest=make_manifest(extra=self.HOOKS)))

        package_dir = store.package_dir("foo")
        assert (package_dir / "pre.txt").read_text().strip() == "pre"
        assert (package_dir / "post.txt").read_text().strip() == "post"

    def test_failing_preinstall_stops_before_download(self, pipeline_for, linux_host, fake_downloader):
        hooks = '\n[hook.unix.sh]\npreinstall = "exit 1"\n'
        pipeline = pipeline_for(linux_host)

        with pytest.raises(HookFailed):
            asyncio.run(pipeline.run(manifest=make_manifest(extra=hooks)))

        assert pipeline.failed_stage is InstallStage.RUNNING_PRE_HOOK
        assert fake_downloader.calls == []


class TestRoundTrip:
    """Install then uninstall leaves nothing behind."""

    @posix_only
    def test_symlink_strategy(self, store, pipeline_for, linux_host, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo")
        asyncio.run(pipeline_for(linux_host).run(manifest=make_manifest()))

        uninstall(store, "foo", linux_host)

        assert list(store.bin_dir().iterdir()) == []
        assert not store.package_dir("foo").exists()

    def test_shim_strategy(self, store, pipeline_for, windows_host, fake_downloader, archive_bytes):
        serve(fake_downloader, archive_bytes, "foo", "1.0.0", "foo.exe")
        asyncio.run(pipeline_for(windows_host).run(manifest=make_manifest(platform="windows")))

        uninstall(store, "foo", windows_host)

        assert list(store.bin_dir().iterdir()) == []
        assert not store.package_dir("foo").exists()
