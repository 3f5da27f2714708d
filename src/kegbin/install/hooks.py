"""Preinstall and postinstall hook execution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from kegbin.core.errors import HookFailed
from kegbin.core.logging import get_logger
from kegbin.core.models import Hook, HookDefinition, HostPlatform, Terminal
from kegbin.core.shell import run_script

log = get_logger(__name__)

HOOK_NAMES = ("preinstall", "postinstall")

_SYSTEM_SECTIONS = {
    "linux": "linux",
    "darwin": "macos",
    "freebsd": "freebsd",
}


@dataclass(frozen=True)
class TerminalHook:
    """The scripts picked for this host and the shell that runs them."""

    terminal: Terminal
    definition: HookDefinition


def resolve_hook(hook: Hook, host: HostPlatform) -> TerminalHook | None:
    """Pick the hook section and terminal for ``host``.

    Windows reads the ``windows`` section. Other systems read their own
    section (``linux``, ``macos``, ``freebsd``) when the formula has one,
    else ``unix``. Within the section ``cmd`` is preferred over
    ``powershell`` on Windows and ``sh`` over ``bash`` elsewhere.
    """
    if host.is_windows:
        section = hook.sections.get("windows")
        order = (Terminal.CMD, Terminal.POWERSHELL)
    else:
        specific = _SYSTEM_SECTIONS.get(host.system)
        section = hook.sections.get(specific) if specific else None
        if section is None:
            section = hook.sections.get("unix")
        order = (Terminal.SH, Terminal.BASH)

    if not section:
        return None

    for terminal in order:
        if terminal in section:
            return TerminalHook(terminal=terminal, definition=section[terminal])
    return None


async def run_hook(
    hook: Hook | None,
    hook_name: str,
    cwd: Path,
    host: HostPlatform,
    package: str | None = None,
) -> bool:
    """Run the named hook script, if the formula defines one for this host.

    Args:
        hook: The formula's hook table, may be None.
        hook_name: "preinstall" or "postinstall".
        cwd: Working directory of the script.
        host: Selects the section and terminal.
        package: Package name, for logging.

    Returns:
        True if a script ran.

    Raises:
        ValueError: If ``hook_name`` is not a known hook.
        HookFailed: If the script exits non-zero.
    """
    if hook_name not in HOOK_NAMES:
        raise ValueError(f"Unknown hook '{hook_name}'")
    if hook is None:
        return False

    resolved = resolve_hook(hook, host)
    if resolved is None:
        return False

    script = getattr(resolved.definition, hook_name)
    if not script:
        return False

    log.info("hook_start", package=package, hook=hook_name, terminal=resolved.terminal.value)
    returncode = await run_script(resolved.terminal, script, cwd)

    if returncode != 0:
        log.error("hook_failed", package=package, hook=hook_name, returncode=returncode)
        raise HookFailed(
            hook=hook_name,
            returncode=returncode,
            context={"package": package, "terminal": resolved.terminal.value}
        )
    return True
