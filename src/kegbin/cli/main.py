"""CLI entry point for the kegbin package manager."""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Optional

import typer

from kegbin.analysis.status import is_newer
from kegbin.cli.renderers import console, out, package_details, package_table, updates_table
from kegbin.core.config import Settings, discover_settings
from kegbin.core.errors import (
    EXIT_SYSTEM_ERROR,
    EXIT_TRANSIENT_ERROR,
    EXIT_USER_ERROR,
    PUBLISHING_HINT,
    InvalidPackageIdentifier,
    KegError,
    NotAFormula,
    SystemError,
    TransientError,
    UserError,
    format_error_message,
)
from kegbin.core.logging import configure_logging, get_logger
from kegbin.core.repo import Repository
from kegbin.core.store import Store
from kegbin.install import manage
from kegbin.install.pipeline import InstallPipeline
from kegbin.providers.downloader import HttpDownloader
from kegbin.providers.git import GitClient

log = get_logger(__name__)

app = typer.Typer(help="kegbin: a cross-platform binary package manager.", no_args_is_help=True)


def handle_error(error: Exception) -> int:
    """Handle errors and return appropriate exit codes.

    Args:
        error: The exception to handle.

    Returns:
        An integer exit code.
    """
    if isinstance(error, KegError):
        log.error(
            "cli_error",
            error_type=type(error).__name__,
            message=error.message,
            context=error.context,
            exc_info=True
        )
        console.print(f"\n{format_error_message(error)}\n", style="bold red")

        if isinstance(error, NotAFormula):
            console.print(PUBLISHING_HINT, style="dim")

        if isinstance(error, TransientError):
            return EXIT_TRANSIENT_ERROR
        elif isinstance(error, UserError):
            return EXIT_USER_ERROR
        elif isinstance(error, SystemError):
            return EXIT_SYSTEM_ERROR
        else:
            return EXIT_USER_ERROR
    else:
        log.error(
            "unexpected_error",
            error=str(error),
            exc_info=True
        )
        console.print(
            f"\n⚠️ Unexpected error occurred: {error}\n",
            style="bold red"
        )
        return EXIT_SYSTEM_ERROR


def _settings() -> Settings:
    return discover_settings()


def _pipeline(settings: Settings, store: Store) -> InstallPipeline:
    client = GitClient(
        exists_timeout=settings.exists_timeout,
        clone_timeout=settings.clone_timeout,
        list_tags_timeout=settings.list_tags_timeout,
    )
    downloader = HttpDownloader(
        timeout=settings.download_timeout,
        chunk_size=settings.download_chunk_size,
        console=console,
    )
    return InstallPipeline(store, settings.host, client, downloader)


def _warn_if_not_on_path(store: Store) -> None:
    if not store.is_bin_dir_on_path():
        console.print(
            f"[yellow]'{store.bin_dir()}' is not in your PATH. "
            "Add it to run installed commands directly.[/yellow]"
        )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print log events to stderr"),
) -> None:
    """Configure logging before running a command."""
    settings = _settings()
    level = "DEBUG" if verbose else settings.log_level
    configure_logging(level=level, enable_console=verbose, force=True)


@app.command("install")
def install_cmd(
    package: Optional[str] = typer.Argument(
        None, help="Package name or repository URL; '-' or nothing reads a formula from stdin"
    ),
    version: Optional[str] = typer.Argument(None, help="Version or range such as ^1.2"),
) -> None:
    """Install a package."""
    settings = _settings()
    store = Store(settings.root)
    pipeline = _pipeline(settings, store)

    try:
        manifest = None
        if package in (None, "-"):
            if package is None and sys.stdin.isatty():
                raise InvalidPackageIdentifier("A package name or a piped formula is required")
            manifest = sys.stdin.buffer.read()
            package = None

        result = asyncio.run(pipeline.run(package=package, version=version, manifest=manifest))

        console.print(
            f"[green]Installed {result.formula.package.name}@{result.version}, "
            f"command '{result.formula.package.bin}' is ready.[/green]"
        )
        _warn_if_not_on_path(store)
    except Exception as e:
        if pipeline.formula is not None:
            manage.discard_incomplete(store, pipeline.formula.package.name)
        sys.exit(handle_error(e))


@app.command("uninstall")
def uninstall_cmd(
    package: str = typer.Argument(..., help="Package name or the command it provides"),
) -> None:
    """Uninstall a package and remove its command."""
    try:
        settings = _settings()
        formula = manage.uninstall(Store(settings.root), package, settings.host)
        console.print(
            f"[green]Uninstalled {formula.package.name} and removed command "
            f"'{formula.package.bin}'.[/green]"
        )
    except Exception as e:
        sys.exit(handle_error(e))


@app.command("list")
def list_cmd(
    as_json: bool = typer.Option(False, "--json", "-j", help="Print JSON instead of a table"),
) -> None:
    """List installed packages."""
    try:
        settings = _settings()
        repo = Repository(Store(settings.root), settings.host)
        pkgs = repo.get_all_installed()

        if as_json:
            rows = [
                {
                    "name": p.name,
                    "bin": p.formula.package.bin,
                    "version": p.version,
                    "created_at": p.created_at,
                    "repository": p.formula.repository,
                }
                for p in pkgs
            ]
            out.print_json(json.dumps(rows))
        else:
            out.print(package_table(pkgs))
    except Exception as e:
        sys.exit(handle_error(e))


@app.command("info")
def info_cmd(
    package: str = typer.Argument(..., help="Package name, command name or repository URL"),
) -> None:
    """Show information about an installed or remote package."""
    try:
        settings = _settings()
        store = Store(settings.root)
        installed = store.find_installed(package)

        if installed is not None:
            pkg = Repository(store, settings.host).get_installed(package)
            out.print(package_details(pkg.formula, pkg.status))
        else:
            resolver = _pipeline(settings, store).resolver
            formula = asyncio.run(Repository(store, settings.host, resolver).get_remote(package))
            out.print(package_details(formula))
    except Exception as e:
        sys.exit(handle_error(e))


@app.command("search")
def search_cmd(
    package: str = typer.Argument(..., help="Package name or repository URL"),
) -> None:
    """Fetch the formula of a package and show it."""
    try:
        settings = _settings()
        store = Store(settings.root)
        resolver = _pipeline(settings, store).resolver
        formula = asyncio.run(Repository(store, settings.host, resolver).get_remote(package))
        out.print(package_details(formula))
    except Exception as e:
        sys.exit(handle_error(e))


@app.command("upgrade")
def upgrade_cmd(
    package: str = typer.Argument(..., help="Package name or the command it provides"),
    check_only: bool = typer.Option(False, "--check-only", "-c", help="Only check for a newer version"),
) -> None:
    """Upgrade a package to its latest version."""
    try:
        settings = _settings()
        store = Store(settings.root)
        info, upgraded = asyncio.run(
            manage.upgrade(_pipeline(settings, store), package, check_only=check_only)
        )

        if upgraded:
            console.print(f"[green]Upgraded {info.name} from {info.current} to {info.latest}.[/green]")
        elif check_only and is_newer(info.latest, info.current):
            console.print(
                f"Found version [green]{info.latest}[/green] of {info.name}, "
                f"using {info.current} currently."
            )
        else:
            console.print(f"You are using the latest version of [green]{info.name}[/green].")
    except Exception as e:
        sys.exit(handle_error(e))


app.command("update", help="Alias of 'upgrade'.")(upgrade_cmd)


@app.command("check-updates")
def check_updates_cmd(
    check_only: bool = typer.Option(False, "--check-only", "-c", help="Only list available updates"),
) -> None:
    """Check every installed package and upgrade the outdated ones."""
    try:
        settings = _settings()
        store = Store(settings.root)
        updates = asyncio.run(manage.check_updates(_pipeline(settings, store), check_only=check_only))

        if not updates:
            console.print("[green]All packages are up to date.[/green]")
            return
        out.print(updates_table(updates))
        if not check_only:
            console.print(f"[green]Upgraded {len(updates)} package(s).[/green]")
    except Exception as e:
        sys.exit(handle_error(e))


@app.command("relink")
def relink_cmd() -> None:
    """Link the commands of all installed packages again."""
    try:
        settings = _settings()
        store = Store(settings.root)
        links = manage.relink(store, settings.host)
        console.print(f"[green]Relinked {len(links)} command(s).[/green]")
        _warn_if_not_on_path(store)
    except Exception as e:
        sys.exit(handle_error(e))


@app.command("clean")
def clean_cmd() -> None:
    """Remove old archives, incomplete installs and broken links."""
    try:
        settings = _settings()
        removed = manage.clean(Store(settings.root), settings.host)
        for path in removed:
            console.print(f"[dim]removed {path}[/dim]")
        console.print(f"[green]Cleaned {len(removed)} item(s).[/green]")
    except Exception as e:
        sys.exit(handle_error(e))


if __name__ == "__main__":
    app()
