"""Tests for package status and the read-side repository."""

from __future__ import annotations

import asyncio

import pytest

from kegbin.analysis.status import derive_status, is_newer
from kegbin.core.errors import PackageNotInstalled
from kegbin.core.models import CaskRecord, PackageStatus
from kegbin.core.repo import Repository
from kegbin.formula.manifest import read_formula, stamp_manifest
from kegbin.formula.resolver import FormulaResolver
from kegbin.install.linker import expose


def install(store, host, name, bin, created_at="2024-01-01T00:00:00+00:00", link=True):
    manifest = (
        f'[package]\nname = "{name}"\nbin = "{bin}"\nrepository = "https://example.com/{bin}"\n'
    ).encode()
    record = CaskRecord(name=name, created_at=created_at, version="1.0.0", repository="https://example.com/cask")
    store.init_package(name)
    store.package_manifest(name).write_bytes(stamp_manifest(record, manifest))

    executable = store.package_bin_dir(name) / host.executable_name(bin)
    executable.write_bytes(b"binary")
    if link:
        expose(executable, store.bin_dir() / bin, name, host)
    return read_formula(store.package_manifest(name))


@pytest.mark.parametrize(
    "latest, current, expected",
    [
        ("1.1.0", "1.0.0", True),
        ("1.0.0", "1.0.0", False),
        ("0.9.0", "1.0.0", False),
        ("1.0.0", "1.0.0-rc.1", True),
        ("nightly", "1.0.0", False),
    ],
)
def test_is_newer(latest, current, expected):
    assert is_newer(latest, current) is expected


class TestDeriveStatus:
    """Status flags of installed packages."""

    def test_healthy(self, store, windows_host):
        formula = install(store, windows_host, "foo", "foo")
        assert derive_status(store, formula, windows_host) == PackageStatus.NONE

    def test_not_linked(self, store, windows_host):
        formula = install(store, windows_host, "foo", "foo", link=False)
        assert derive_status(store, formula, windows_host) == PackageStatus.NOT_LINKED

    def test_foreign_file_in_bin_dir_is_not_linked(self, store, windows_host):
        formula = install(store, windows_host, "foo", "foo", link=False)
        store.bin_dir().mkdir(parents=True, exist_ok=True)
        (store.bin_dir() / "foo").write_text("#!/bin/sh\necho someone else\n")

        assert derive_status(store, formula, windows_host) == PackageStatus.NOT_LINKED

    def test_only_link_health_is_reported(self, store, windows_host):
        formula = install(store, windows_host, "foo", "foo")
        store.package_manifest("foo").unlink()

        assert derive_status(store, formula, windows_host) == PackageStatus.NONE


class TestRepository:
    """The read-side facade used by the CLI."""

    def test_most_recent_first(self, store, windows_host):
        install(store, windows_host, "old", "old", created_at="2024-01-01T00:00:00+00:00")
        install(store, windows_host, "new", "new", created_at="2024-06-01T00:00:00+00:00")

        pkgs = Repository(store, windows_host).get_all_installed()

        assert [p.name for p in pkgs] == ["new", "old"]
        assert pkgs[0].version == "1.0.0"
        assert pkgs[0].status == PackageStatus.NONE

    def test_get_installed_by_bin(self, store, windows_host):
        install(store, windows_host, "github.com/example/tool", "tool")

        pkg = Repository(store, windows_host).get_installed("tool")

        assert pkg.name == "github.com/example/tool"

    def test_get_installed_missing(self, store, windows_host):
        with pytest.raises(PackageNotInstalled):
            Repository(store, windows_host).get_installed("nope")

    def test_get_remote(self, store, windows_host, fake_client):
        url = "https://example.com/foo-cask"
        fake_client.repos[url] = {
            "Cask.toml": b'[package]\nname = "foo"\nbin = "foo"\nrepository = "https://example.com/foo"\n'
        }
        repo = Repository(store, windows_host, FormulaResolver(store, fake_client))

        formula = asyncio.run(repo.get_remote(url))

        assert formula.package.name == "foo"
        assert formula.repository == url
        assert not store.package_dir("foo").exists()

    def test_get_remote_needs_resolver(self, store, windows_host):
        with pytest.raises(RuntimeError):
            asyncio.run(Repository(store, windows_host).get_remote("foo"))
