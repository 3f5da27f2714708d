"""Extract a single named file out of a release archive.

Supported containers: gzip tarballs (``.tar.gz``/``.tgz``), bzip2 tarballs
(``.tar.bz2``), plain tarballs (``.tar``) and ``.zip``.
"""

from __future__ import annotations

import os
import re
import shutil
import tarfile
import zipfile
from pathlib import Path

from kegbin.core.errors import EntryNotFound, UnsupportedContainer
from kegbin.core.logging import get_logger

log = get_logger(__name__)

TAR_MODES = (
    (".tar.gz", "r|gz"),
    (".tgz", "r|gz"),
    (".tar.bz2", "r|bz2"),
    (".tar", "r|"),
)
ZIP_SUFFIX = ".zip"

# Some tar producers wrap huge files as GNUSparseFile.<n>/<name>
SPARSE_PREFIX = re.compile(r"^GNUSparseFile\.\d+/")
XATTR_PREFIX = "SCHILY.xattr."


def requested_path(filename: str, folder: str) -> str:
    return f"{folder}/{filename}".replace("//", "/")


def normalize_entry_path(name: str) -> str:
    """Absolute form of a tar member name.

    ``./gpm``, ``/gpm`` and ``GNUSparseFile.0/gpm`` all become ``/gpm``.
    """
    while name.startswith("./"):
        name = name[2:]
    name = name.lstrip("/")
    name = SPARSE_PREFIX.sub("", name, count=1)
    return f"/{name}"


def _prepare_output(output: Path) -> None:
    if output.is_symlink() or output.exists():
        output.unlink()


def _apply_xattrs(output: Path, member: tarfile.TarInfo) -> None:
    if not hasattr(os, "setxattr"):
        return
    for key, value in member.pax_headers.items():
        if not key.startswith(XATTR_PREFIX):
            continue
        attr = key[len(XATTR_PREFIX):]
        try:
            os.setxattr(output, attr, value.encode("utf-8", "surrogateescape"))
        except OSError as e:
            log.warning("xattr_not_applied", path=str(output), attr=attr, error=str(e))


def _unpack_member(tar: tarfile.TarFile, member: tarfile.TarInfo, output: Path) -> None:
    """Write a regular member to ``output`` keeping mode, mtime and xattrs.

    Non-regular members produce no output.
    """
    if not member.isfile():
        log.warning("entry_not_regular_file", entry=member.name, type=member.type)
        return

    source = tar.extractfile(member)
    if source is None:
        return

    _prepare_output(output)
    with source, open(output, "wb") as out:
        shutil.copyfileobj(source, out)

    os.chmod(output, member.mode & 0o7777)
    os.utime(output, (member.mtime, member.mtime))
    _apply_xattrs(output, member)


def extract_tar(archive: Path, mode: str, filename: str, folder: str, output: Path) -> Path:
    """Stream tar members and unpack the first one matching the request."""
    target = requested_path(filename, folder)

    try:
        with tarfile.open(archive, mode) as tar:
            for member in tar:
                if normalize_entry_path(member.name) == target:
                    _unpack_member(tar, member, output)
                    return output
    except (tarfile.TarError, EOFError) as e:
        raise UnsupportedContainer(
            f"Can not read archive '{archive.name}': {e}",
            path=str(archive)
        ) from e

    raise EntryNotFound(filename=filename, folder=folder)


def extract_zip(archive: Path, filename: str, folder: str, output: Path) -> Path:
    """Find the first non-directory entry matching the request and copy it."""
    target = requested_path(filename, folder)

    try:
        zf = zipfile.ZipFile(archive)
    except zipfile.BadZipFile as e:
        raise UnsupportedContainer(
            f"Can not read archive '{archive.name}': {e}",
            path=str(archive)
        ) from e

    with zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            if f"/{info.filename}" != target:
                continue

            _prepare_output(output)
            with zf.open(info) as source, open(output, "wb") as out:
                shutil.copyfileobj(source, out)

            mode = (info.external_attr >> 16) & 0o7777
            if os.name == "posix" and mode:
                os.chmod(output, mode)
            return output

    raise EntryNotFound(filename=filename, folder=folder)


def extract(archive: Path, dest_dir: Path, filename: str, folder: str) -> Path:
    """Extract ``folder/filename`` from ``archive`` into ``dest_dir/filename``.

    Args:
        archive: The archive; its suffix selects the container reader.
        dest_dir: Output folder, created if missing.
        filename: Name of the wanted entry.
        folder: Folder inside the archive holding it ("/" for the root).

    Returns:
        Path of the extracted file.

    Raises:
        UnsupportedContainer: If the suffix is unknown or the archive unreadable.
        EntryNotFound: If no regular file matches.
    """
    archive = Path(archive)
    name = archive.name
    output = Path(dest_dir) / filename

    if name.endswith(ZIP_SUFFIX):
        reader = lambda: extract_zip(archive, filename, folder, output)  # noqa: E731
    else:
        mode = next((m for suffix, m in TAR_MODES if name.endswith(suffix)), None)
        if mode is None:
            raise UnsupportedContainer(path=str(archive))
        reader = lambda: extract_tar(archive, mode, filename, folder, output)  # noqa: E731

    Path(dest_dir).mkdir(parents=True, exist_ok=True)
    _prepare_output(output)
    result = reader()

    if not (result.exists() and result.is_file()):
        raise EntryNotFound(filename=filename, folder=folder)

    log.info("entry_extracted", archive=name, entry=requested_path(filename, folder), path=str(result))
    return result
