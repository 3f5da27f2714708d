"""Shared fixtures: fake remote collaborators, hosts, stores and archives."""

from __future__ import annotations

import io
import os
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, List

import pytest

# Keep log files out of the home directory
os.environ.setdefault("KEGBIN_LOG_DIR", tempfile.mkdtemp(prefix="kegbin_test_logs_"))

from kegbin.core.errors import DownloadError, RepositoryNotFound  # noqa: E402
from kegbin.core.logging import configure_logging  # noqa: E402
from kegbin.core.models import OS, Arch, GitTag, HostPlatform  # noqa: E402
from kegbin.core.store import Store  # noqa: E402

configure_logging(level="DEBUG", force=True)


class FakeRepositoryClient:
    """In-memory repository client.

    ``repos`` maps a URL to the files of its checkout, ``tags`` maps a URL
    to its tag names. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        repos: Dict[str, Dict[str, bytes]] | None = None,
        tags: Dict[str, List[str]] | None = None,
    ) -> None:
        self.repos = repos or {}
        self.tags = tags or {}
        self.calls: list[tuple[str, str]] = []

    async def exists(self, url: str) -> bool:
        self.calls.append(("exists", url))
        return url in self.repos or url in self.tags

    async def clone(self, url: str, dest: Path, options) -> None:
        self.calls.append(("clone", url))
        if url not in self.repos:
            raise RepositoryNotFound(url=url)
        dest.mkdir(parents=True)
        for name, content in self.repos[url].items():
            (dest / name).write_bytes(content)

    async def list_tags(self, url: str) -> List[GitTag]:
        self.calls.append(("list_tags", url))
        if url not in self.tags:
            raise RepositoryNotFound(url=url)
        return [GitTag(hash=f"{i:040x}", tag=t) for i, t in enumerate(self.tags[url])]


class FakeDownloader:
    """Serves downloads from a URL -> bytes mapping."""

    def __init__(self, files: Dict[str, bytes] | None = None) -> None:
        self.files = files or {}
        self.calls: list[tuple[str, Path]] = []

    def download(self, url: str, dest: Path) -> Path:
        self.calls.append((url, dest))
        if url not in self.files:
            raise DownloadError(f"No such file {url}", url=url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.files[url])
        return dest


@pytest.fixture
def linux_host() -> HostPlatform:
    return HostPlatform(os=OS.LINUX, arch=Arch.X86_64, system="linux", family="unix")


@pytest.fixture
def darwin_host() -> HostPlatform:
    return HostPlatform(os=OS.DARWIN, arch=Arch.X86_64, system="darwin", family="unix")


@pytest.fixture
def windows_host() -> HostPlatform:
    return HostPlatform(os=OS.WINDOWS, arch=Arch.X86_64, system="windows", family="windows")


@pytest.fixture
def store(tmp_path: Path) -> Store:
    s = Store(tmp_path / "kegbin-root")
    s.init()
    return s


@pytest.fixture
def fake_client() -> FakeRepositoryClient:
    return FakeRepositoryClient()


@pytest.fixture
def fake_downloader() -> FakeDownloader:
    return FakeDownloader()


def _tar_bytes(entries: Dict[str, bytes], compression: str, file_mode: int) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=f"w:{compression}") as tar:
        for name, content in entries.items():
            if content is None:
                info = tarfile.TarInfo(name)
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
                continue
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = file_mode
            info.mtime = 1_600_000_000
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def _zip_bytes(entries: Dict[str, bytes], file_mode: int) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in entries.items():
            if content is None:
                info = zipfile.ZipInfo(name.rstrip("/") + "/")
                info.external_attr = (0o40755 << 16) | 0x10
                zf.writestr(info, b"")
                continue
            info = zipfile.ZipInfo(name)
            info.create_system = 3
            info.external_attr = (0o100000 | file_mode) << 16
            zf.writestr(info, content)
    return buf.getvalue()


@pytest.fixture
def archive_bytes() -> Callable[..., bytes]:
    """Build archive content in memory.

    ``entries`` maps member names to content; None makes a directory.
    ``kind`` is one of "gz", "bz2", "tar" or "zip".
    """

    def build(entries: Dict[str, bytes], kind: str = "gz", file_mode: int = 0o755) -> bytes:
        if kind == "zip":
            return _zip_bytes(entries, file_mode)
        return _tar_bytes(entries, "" if kind == "tar" else kind, file_mode)

    return build


@pytest.fixture
def make_archive(tmp_path: Path, archive_bytes) -> Callable[..., Path]:
    """Write an archive built by ``archive_bytes`` to ``tmp_path/name``."""

    def build(name: str, entries: Dict[str, bytes], kind: str = "gz", file_mode: int = 0o755) -> Path:
        path = tmp_path / name
        path.write_bytes(archive_bytes(entries, kind, file_mode))
        return path

    return build
