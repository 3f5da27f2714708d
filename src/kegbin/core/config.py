"""Configuration module for the kegbin environment."""

from __future__ import annotations

import os
import platform
import sys
from dataclasses import dataclass
from pathlib import Path

from kegbin.core.models import OS, Arch, HostPlatform

_SYSTEMS = {
    "windows": OS.WINDOWS,
    "darwin": OS.DARWIN,
    "linux": OS.LINUX,
}

_MACHINES = {
    "x86": Arch.X86,
    "i386": Arch.X86,
    "i486": Arch.X86,
    "i586": Arch.X86,
    "i686": Arch.X86,
    "x86_64": Arch.X86_64,
    "amd64": Arch.X86_64,
    "arm64": Arch.AARCH64,
    "aarch64": Arch.AARCH64,
    "mips": Arch.MIPS,
    "mips64": Arch.MIPS64,
    "mips64el": Arch.MIPS64EL,
}


def detect_arch(machine: str, byteorder: str = sys.byteorder) -> Arch | None:
    """Map a ``platform.machine()`` value onto the formula arch names."""
    machine = machine.lower()
    if machine == "mips64" and byteorder == "little":
        return Arch.MIPS64EL
    if machine in _MACHINES:
        return _MACHINES[machine]
    if machine.startswith("arm"):
        return Arch.ARM
    return None


def detect_host(system: str | None = None, machine: str | None = None) -> HostPlatform:
    """Discover the running OS and CPU architecture."""
    system = (system or platform.system()).lower()
    machine = machine or platform.machine()
    family = "windows" if system == "windows" else "unix"

    return HostPlatform(
        os=_SYSTEMS.get(system),
        arch=detect_arch(machine),
        system=system,
        family=family,
    )


@dataclass
class Settings:
    """Configuration for a kegbin invocation."""
    root: Path
    host: HostPlatform
    log_level: str = "INFO"
    exists_timeout: int = 30
    clone_timeout: int = 300
    list_tags_timeout: int = 30
    download_timeout: int = 30
    download_chunk_size: int = 8192


def discover_settings(root: Path | None = None) -> Settings:
    """Build settings from the environment.

    ``KEGBIN_ROOT`` overrides the store root (default ``~/.kegbin``) and
    ``KEGBIN_LOG_LEVEL`` the log level.
    """
    if root is None:
        env_root = os.environ.get("KEGBIN_ROOT")
        root = Path(env_root) if env_root else Path.home() / ".kegbin"

    return Settings(
        root=root,
        host=detect_host(),
        log_level=os.environ.get("KEGBIN_LOG_LEVEL", "INFO"),
    )
