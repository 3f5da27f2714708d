"""Renderers for displaying package information in the CLI using Rich."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from rich import box
from rich.console import Console
from rich.table import Table

from kegbin.core.models import Formula, PackageStatus
from kegbin.core.repo import InstalledPackage
from kegbin.install.manage import UpdateInfo

console = Console(stderr=True)
out = Console()


STATUS_LABELS = {
    PackageStatus.NOT_LINKED: "[blue]Not Linked[/blue]",
}


def status_to_str(status: PackageStatus) -> str:
    """Convert PackageStatus to a human-readable string with color coding.

    Args:
        status: The PackageStatus to convert.

    Returns:
        A human-readable string representation of the PackageStatus.
    """
    if status == PackageStatus.NONE:
        return "[green]OK[/green]"
    bits = [label for flag, label in STATUS_LABELS.items() if flag in status]
    return ", ".join(bits)


def format_timestamp(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return value


def package_table(pkgs: Iterable[InstalledPackage]) -> Table:
    """Create a Rich Table listing installed packages.

    Args:
        pkgs: The installed packages to display.

    Returns:
        A Rich Table with one row per package.
    """
    table = Table(box=box.MINIMAL_HEAVY_HEAD)
    table.add_column("Name", style="bold")
    table.add_column("Bin")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Installed On", style="dim")

    for p in pkgs:
        table.add_row(
            p.name,
            p.formula.package.bin,
            p.version,
            status_to_str(p.status),
            format_timestamp(p.created_at),
        )

    return table


def package_details(formula: Formula, status: PackageStatus | None = None) -> Table:
    """Display detailed information about a formula.

    Works for installed formulas (with their cask record and status) and
    for remote ones fetched for ``info``/``search``.
    """
    pkg = formula.package
    t = Table(box=box.MINIMAL_HEAVY_HEAD)
    t.add_column("Field", style="bold")
    t.add_column("Value")
    t.add_row("Name", pkg.name)
    t.add_row("Bin", pkg.bin)
    t.add_row("Description", pkg.description)
    t.add_row("Repository", pkg.repository)
    if pkg.homepage:
        t.add_row("Homepage", pkg.homepage)
    if pkg.license:
        t.add_row("License", pkg.license)
    if pkg.authors:
        t.add_row("Authors", ", ".join(pkg.authors))
    if pkg.keywords:
        t.add_row("Keywords", ", ".join(pkg.keywords))
    if pkg.versions:
        t.add_row("Versions", ", ".join(pkg.versions))

    platforms = [
        f"{os_.value}/{arch.value}"
        for os_, archs in formula.platforms.items()
        for arch in archs
    ]
    t.add_row("Platforms", ", ".join(platforms))

    if formula.cask:
        t.add_row("Installed Version", formula.cask.version)
        t.add_row("Installed On", format_timestamp(formula.cask.created_at))
        t.add_row("Installed From", formula.cask.repository or "(local formula)")
    if status is not None:
        t.add_row("Status", status_to_str(status))

    return t


def updates_table(updates: Iterable[UpdateInfo]) -> Table:
    """Create a Rich Table of available updates."""
    table = Table(box=box.MINIMAL_HEAVY_HEAD)
    table.add_column("Name", style="bold")
    table.add_column("Current")
    table.add_column("Latest", style="green")
    for u in updates:
        table.add_row(u.name, u.current, u.latest)
    return table
