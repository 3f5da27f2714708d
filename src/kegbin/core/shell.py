"""Asynchronous subprocess execution with deadlines."""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import Mapping, Optional

from kegbin.core.errors import CommandTimeout
from kegbin.core.logging import get_logger
from kegbin.core.models import Terminal

log = get_logger(__name__)

TERMINAL_COMMANDS: dict[Terminal, list[str]] = {
    Terminal.CMD: ["cmd.exe", "/c"],
    Terminal.POWERSHELL: [
        "powershell.exe",
        "-NoLogo",
        "-NoProfile",
        "-NonInteractive",
        "-Command",
    ],
    Terminal.SH: ["sh", "-c"],
    Terminal.BASH: ["bash", "-c"],
}


def _merged_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if not env:
        return None
    merged = os.environ.copy()
    merged.update(env)
    return merged


async def _wait(
    process: asyncio.subprocess.Process, cmd: tuple[str, ...], timeout: Optional[float], start: float
) -> tuple[bytes, bytes]:
    """Wait for ``process``; on expiry kill it, reap it and raise."""
    try:
        return await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError as e:
        duration_ms = int((time.perf_counter() - start) * 1000)
        log.error(
            "command_timeout",
            command=" ".join(cmd),
            timeout=timeout,
            duration_ms=duration_ms
        )
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        raise CommandTimeout(
            command=" ".join(cmd),
            timeout=timeout,
            context={"duration_ms": duration_ms}
        ) from e


async def run_capture(
    *cmd: str,
    timeout: Optional[float] = 30,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> tuple[str, str, int]:
    """Run a command with captured output and an optional deadline.

    Args:
        *cmd: Command and its arguments to run.
        timeout: Timeout in seconds, None waits forever.
        env: Extra environment variables layered over the current ones.
        cwd: Working directory.

    Returns:
        A tuple of (stdout, stderr, returncode).

    Raises:
        CommandTimeout: If the command runs past its deadline.
    """
    start = time.perf_counter()
    log.debug("command_start", command=" ".join(cmd), timeout=timeout)

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=_merged_env(env),
        cwd=cwd,
    )

    out, err = await _wait(process, cmd, timeout, start)
    duration_ms = int((time.perf_counter() - start) * 1000)
    log.info(
        "command_complete",
        command=" ".join(cmd),
        returncode=process.returncode,
        duration_ms=duration_ms
    )

    return out.decode(errors="replace").strip(), err.decode(errors="replace").strip(), process.returncode


async def run_script(
    terminal: Terminal,
    script: str,
    cwd: Path,
    timeout: Optional[float] = None,
) -> int:
    """Run a script through ``terminal`` with inherited standard streams.

    Args:
        terminal: The shell used to interpret the script.
        script: Script text.
        cwd: Working directory.
        timeout: Optional deadline in seconds.

    Returns:
        The exit code of the shell.
    """
    cmd = (*TERMINAL_COMMANDS[terminal], script)
    start = time.perf_counter()
    log.debug("script_start", terminal=terminal.value, cwd=str(cwd))

    process = await asyncio.create_subprocess_exec(*cmd, cwd=cwd)
    await _wait(process, cmd, timeout, start)

    log.info(
        "script_complete",
        terminal=terminal.value,
        returncode=process.returncode,
        duration_ms=int((time.perf_counter() - start) * 1000)
    )
    return process.returncode
