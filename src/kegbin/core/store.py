"""On-disk layout of the package store."""

from __future__ import annotations

import hashlib
import os
from dataclasses import replace
from pathlib import Path
from typing import List

from kegbin.core.errors import ManifestError, StoreError
from kegbin.core.logging import get_logger
from kegbin.core.models import Formula
from kegbin.formula.manifest import MANIFEST_FILENAME, read_formula

log = get_logger(__name__)


class Store:
    """Resolves every path of the store from the root directory.

    Layout::

        <root>/bin/                            linked executables and shims
        <root>/formula/<sha256(name)>/Cask.toml
        <root>/formula/<sha256(name)>/bin/
        <root>/formula/<sha256(name)>/version/
        <root>/formula/<sha256(name)>/repository/
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def root_dir(self) -> Path:
        return self.root

    def bin_dir(self) -> Path:
        return self.root / "bin"

    def formula_dir(self) -> Path:
        return self.root / "formula"

    def package_dir(self, package_name: str) -> Path:
        """The package folder, named by the hash of the package name."""
        digest = hashlib.sha256(package_name.encode("utf-8")).hexdigest()
        return self.formula_dir() / digest

    def package_bin_dir(self, package_name: str) -> Path:
        return self.package_dir(package_name) / "bin"

    def package_version_dir(self, package_name: str) -> Path:
        return self.package_dir(package_name) / "version"

    def package_repository_dir(self, package_name: str) -> Path:
        return self.package_dir(package_name) / "repository"

    def package_manifest(self, package_name: str) -> Path:
        return self.package_dir(package_name) / MANIFEST_FILENAME

    def init(self) -> None:
        """Create the top-level folders."""
        for d in (self.root_dir(), self.bin_dir(), self.formula_dir()):
            try:
                d.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(path=str(d), operation="init", context={"error": str(e)}) from e

    def init_package(self, package_name: str) -> None:
        """Create the package folder with its bin and version folders."""
        for d in (self.package_bin_dir(package_name), self.package_version_dir(package_name)):
            try:
                d.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(
                    path=str(d),
                    operation="init_package",
                    context={"package": package_name, "error": str(e)}
                ) from e

    def list_formula(self) -> List[Formula]:
        """Return the stamped manifest of every completed install.

        Package folders without a Cask.toml are incomplete installs and are
        skipped, as are folders whose Cask.toml can not be parsed.
        """
        formula_dir = self.formula_dir()
        if not formula_dir.is_dir():
            return []

        formulas: List[Formula] = []
        for entry in sorted(formula_dir.iterdir()):
            if not entry.is_dir():
                continue
            manifest = entry / MANIFEST_FILENAME
            if not manifest.exists():
                log.debug("incomplete_package_dir", path=str(entry))
                continue
            try:
                formula = read_formula(manifest)
            except ManifestError as e:
                log.warning("unreadable_package_manifest", path=str(manifest), error=e.message)
                continue
            repository = formula.cask.repository if formula.cask else ""
            formulas.append(replace(formula, repository=repository))

        return formulas

    def find_installed(self, name_or_bin: str) -> Formula | None:
        """Find an installed package by package name, then by executable name."""
        formulas = self.list_formula()
        for f in formulas:
            if f.package.name == name_or_bin:
                return f
        for f in formulas:
            if f.package.bin == name_or_bin:
                return f
        return None

    def is_bin_dir_on_path(self) -> bool:
        """Whether ``bin_dir`` is listed in $PATH."""
        target = os.path.normcase(os.path.abspath(self.bin_dir()))
        for entry in os.environ.get("PATH", "").split(os.pathsep):
            if not entry:
                continue
            expanded = os.path.normcase(os.path.abspath(os.path.expanduser(entry)))
            if expanded == target:
                return True
        return False
