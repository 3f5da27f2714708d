"""Data models for formulas, install records and the host machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from pathlib import Path
from typing import Any


class OS(Enum):
    """Operating systems a formula can target."""

    WINDOWS = "windows"
    DARWIN = "darwin"
    LINUX = "linux"


class Arch(Enum):
    """CPU architectures a platform table can list."""

    X86 = "x86"
    X86_64 = "x86_64"
    ARM = "arm"
    AARCH64 = "aarch64"
    MIPS = "mips"
    MIPS64 = "mips64"
    MIPS64EL = "mips64el"


class Terminal(Enum):
    """Shells a hook script can be written for."""

    CMD = "cmd"
    POWERSHELL = "powershell"
    SH = "sh"
    BASH = "bash"


class PackageStatus(Flag):
    """Enumeration of installed package statuses."""

    NONE = 0
    NOT_LINKED = auto()


@dataclass(frozen=True)
class HostPlatform:
    """The machine kegbin is running for.

    ``os`` and ``arch`` are None when the machine is outside the formula
    matrix; ``system`` keeps the raw name (e.g. "freebsd") for hooks.
    """

    os: OS | None
    arch: Arch | None
    system: str
    family: str  # "unix" or "windows"

    @property
    def is_windows(self) -> bool:
        return self.family == "windows"

    def executable_name(self, bin_name: str) -> str:
        """File name of an executable as it sits on disk."""
        return f"{bin_name}.exe" if self.is_windows else bin_name


@dataclass(frozen=True)
class SimpleTarget:
    """A resource given as a bare templated URL."""

    url: str

    @property
    def checksum(self) -> str | None:
        return None

    @property
    def extension(self) -> str | None:
        return None

    @property
    def path(self) -> str | None:
        return None

    @property
    def executable(self) -> bool:
        return False


@dataclass(frozen=True)
class DetailedTarget:
    """A resource given as a table with url and optional details."""

    url: str
    checksum: str | None = None
    extension: str | None = None
    path: str | None = None
    executable: bool = False


ResourceTarget = SimpleTarget | DetailedTarget


@dataclass(frozen=True)
class DownloadTarget:
    """The rendered download for one (version, OS, arch)."""

    url: str
    checksum: str | None
    extension: str
    path: str = "/"
    executable: bool = False


@dataclass(frozen=True)
class PackageInfo:
    """The ``[package]`` table of a formula."""

    name: str
    bin: str
    repository: str
    description: str = ""
    versions: tuple[str, ...] | None = None
    authors: tuple[str, ...] = ()
    keywords: tuple[str, ...] | None = None
    license: str | None = None
    homepage: str | None = None


@dataclass(frozen=True)
class HookDefinition:
    """Scripts for one terminal."""

    preinstall: str | None = None
    postinstall: str | None = None


@dataclass(frozen=True)
class Hook:
    """The ``[hook]`` table: OS section -> terminal -> scripts."""

    sections: dict[str, dict[Terminal, HookDefinition]] = field(default_factory=dict)


@dataclass(frozen=True)
class CaskRecord:
    """Install provenance written into the stored Cask.toml."""

    name: str
    created_at: str
    version: str
    repository: str


@dataclass(frozen=True)
class Formula:
    """A parsed manifest plus the metadata attached after parsing."""

    package: PackageInfo
    platforms: dict[OS, dict[Arch, ResourceTarget]] = field(default_factory=dict)
    dependencies: dict[str, Any] = field(default_factory=dict)
    hook: Hook | None = None
    cask: CaskRecord | None = None

    repository: str = ""
    file_content: bytes = b""
    filepath: Path | None = None

    def resource_for(self, os: OS | None, arch: Arch | None) -> ResourceTarget | None:
        """Look up the resource for an OS/arch pair."""
        if os is None or arch is None:
            return None
        return self.platforms.get(os, {}).get(arch)


@dataclass(frozen=True)
class GitTag:
    """One tag of a remote repository."""

    hash: str
    tag: str
