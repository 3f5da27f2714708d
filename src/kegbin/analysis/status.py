"""Derive the status of an installed package from the store."""

from __future__ import annotations

from packaging.version import InvalidVersion, Version

from kegbin.core.models import Formula, HostPlatform, PackageStatus
from kegbin.core.store import Store
from kegbin.install.linker import link_source


def is_newer(latest: str, current: str) -> bool:
    """Whether ``latest`` is a greater version than ``current``."""
    try:
        return Version(latest) > Version(current)
    except InvalidVersion:
        return False


def derive_status(store: Store, formula: Formula, host: HostPlatform) -> PackageStatus:
    """Derive the PackageStatus of an installed formula.

    A package is NOT_LINKED when its bin folder entry is missing or no
    longer resolves to the package's own executable.
    """
    status = PackageStatus.NONE
    name = formula.package.name

    executable = store.package_bin_dir(name) / host.executable_name(formula.package.bin)
    source = link_source(store.bin_dir() / formula.package.bin)
    if source is None or source != executable.absolute():
        status |= PackageStatus.NOT_LINKED

    return status
