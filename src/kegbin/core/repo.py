"""Repository module for reading installed and remote package data."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Optional

from kegbin.analysis.status import derive_status
from kegbin.core.errors import PackageNotInstalled
from kegbin.core.logging import get_logger
from kegbin.core.models import Formula, HostPlatform, PackageStatus
from kegbin.core.store import Store
from kegbin.formula.resolver import FormulaResolver

log = get_logger(__name__)


@dataclass(frozen=True)
class InstalledPackage:
    """An installed formula with its derived status."""

    formula: Formula
    status: PackageStatus

    @property
    def name(self) -> str:
        return self.formula.package.name

    @property
    def version(self) -> str:
        return self.formula.cask.version if self.formula.cask else ""

    @property
    def created_at(self) -> str:
        return self.formula.cask.created_at if self.formula.cask else ""


class Repository:
    """Repository for querying the store and remote formulas."""

    def __init__(self, store: Store, host: HostPlatform, resolver: Optional[FormulaResolver] = None) -> None:
        self.store = store
        self.host = host
        self.resolver = resolver

    def get_all_installed(self) -> List[InstalledPackage]:
        """Get all installed packages, most recently installed first.

        Returns:
            A list of InstalledPackage instances.
        """
        start = time.perf_counter()
        log.info("fetch_packages_start", root=str(self.store.root_dir()))

        pkgs = [
            InstalledPackage(formula=f, status=derive_status(self.store, f, self.host))
            for f in self.store.list_formula()
        ]
        pkgs.sort(key=lambda p: p.name.lower())
        pkgs.sort(key=lambda p: p.created_at, reverse=True)

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info("fetch_packages_complete", count=len(pkgs), duration_ms=duration_ms)

        return pkgs

    def get_installed(self, name_or_bin: str) -> InstalledPackage:
        """Get an installed package by package name or executable name.

        Raises:
            PackageNotInstalled: If nothing installed matches.
        """
        formula = self.store.find_installed(name_or_bin)
        if formula is None:
            raise PackageNotInstalled(package=name_or_bin)
        return InstalledPackage(formula=formula, status=derive_status(self.store, formula, self.host))

    async def get_remote(self, package: str) -> Formula:
        """Fetch the formula of a package without installing it.

        Args:
            package: Repository URL or bare name.

        Returns:
            The parsed formula.
        """
        if self.resolver is None:
            raise RuntimeError("Repository has no formula resolver")

        start = time.perf_counter()
        log.info("fetch_package_details_start", package=package)

        formula = await self.resolver.fetch(package, temp=True)

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info("fetch_package_details_complete", package=package, duration_ms=duration_ms)

        return formula
