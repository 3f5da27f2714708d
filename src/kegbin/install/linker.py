"""Expose installed executables in the store's bin folder."""

from __future__ import annotations

import os
from pathlib import Path

from kegbin.core.errors import StoreError
from kegbin.core.logging import get_logger
from kegbin.core.models import HostPlatform

log = get_logger(__name__)

SHELL_SHIM = """#!/bin/sh
# Generated by kegbin. DO NOT MODIFY IT.
# package: {package}
# filepath: {filepath}

xbin="{filepath}"

"$xbin" "$@"
exit $?
"""

BATCH_SHIM = """@echo off
:: Generated by kegbin. DO NOT MODIFY IT.
:: package: {package}
:: filepath: {filepath}
"{filepath}" %*
exit /b %ERRORLEVEL%
"""

SHIM_MARKERS = ("# filepath: ", ":: filepath: ")


def batch_shim_path(target: Path) -> Path:
    return target.with_name(target.name + ".bat")


def _remove(path: Path) -> bool:
    # is_symlink catches dangling links that exists() reports as missing
    if path.is_symlink() or path.exists():
        path.unlink()
        return True
    return False


def _write_shims(source: Path, target: Path, package_name: str) -> None:
    values = {"package": package_name, "filepath": str(source)}
    with open(target, "w", encoding="utf-8", newline="\n") as f:
        f.write(SHELL_SHIM.format(**values))
    with open(batch_shim_path(target), "w", encoding="utf-8", newline="\r\n") as f:
        f.write(BATCH_SHIM.format(**values))


def expose(source: Path, target: Path, package_name: str, host: HostPlatform) -> Path:
    """Make ``source`` callable as ``target``.

    On POSIX ``target`` becomes a symlink to ``source``. On Windows two
    shims are written: ``target`` for POSIX-like shells and ``target.bat``
    for cmd. Existing files at the target are overwritten.

    Args:
        source: Absolute path of the installed executable.
        target: Link path inside the store's bin folder.
        package_name: Recorded in the shims for provenance.
        host: Selects the link strategy.

    Returns:
        The target path.

    Raises:
        StoreError: If the link or shims can not be written.
    """
    source = Path(source).absolute()
    target = Path(target)

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        if host.is_windows:
            _write_shims(source, target, package_name)
        else:
            _remove(target)
            os.symlink(source, target)
    except OSError as e:
        raise StoreError(
            f"Can not link executable: {e}",
            path=str(target),
            operation="link",
            context={"package": package_name, "source": str(source)}
        ) from e

    log.info(
        "executable_exposed",
        package=package_name,
        source=str(source),
        target=str(target),
        strategy="shim" if host.is_windows else "symlink"
    )
    return target


def unexpose(target: Path, host: HostPlatform) -> None:
    """Remove the link or shims created by :func:`expose`, if present."""
    target = Path(target)
    paths = [target, batch_shim_path(target)] if host.is_windows else [target]

    for path in paths:
        try:
            if _remove(path):
                log.info("executable_unexposed", target=str(path))
        except OSError as e:
            raise StoreError(
                f"Can not remove link: {e}",
                path=str(path),
                operation="unlink"
            ) from e


def link_source(target: Path) -> Path | None:
    """The executable a link or shell shim points to, if it can be told."""
    target = Path(target)
    if target.is_symlink():
        return Path(os.readlink(target))
    if not target.is_file():
        return None

    try:
        with open(target, "rb") as f:
            head = f.read(1024).decode("utf-8", errors="replace")
    except OSError:
        return None

    for line in head.splitlines():
        for marker in SHIM_MARKERS:
            if line.startswith(marker):
                return Path(line[len(marker):])
    return None
