"""Structured event logging for kegbin.

Every module logs snake_case events through ``get_logger(__name__)``.
Events are written as JSON lines to a size-rotated file under the kegbin
home or ``KEGBIN_LOG_DIR``. ``kegbin --verbose`` switches to coloured
rendering and adds stderr, out of the way of command output on stdout.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.types import FilteringBoundLogger, Processor

LOG_FILENAME = "kegbin.log"
MAX_LOG_BYTES = 2_000_000
LOG_BACKUPS = 2

_CONFIGURED = False


def sanitise_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Drop keys bound to None.

    Callers pass optional values unconditionally, such as the install
    ``constraint=`` or the ``package=`` of a piped manifest, so unset
    ones are removed here rather than rendered as ``null``.
    """
    return {k: v for k, v in event_dict.items() if v is not None}


def default_log_dir() -> Path:
    """Folder of the rotating log file, ``~/.kegbin/logs`` unless overridden."""
    override = os.environ.get("KEGBIN_LOG_DIR")
    if override:
        return Path(override)
    return Path.home() / ".kegbin" / "logs"


def _file_handler(log_file: Path | None, level: int) -> logging.Handler:
    if log_file is None:
        log_dir = default_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / LOG_FILENAME

    handler = RotatingFileHandler(log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    handler.setLevel(level)
    return handler


def _processors(console: bool) -> list[Processor]:
    chain: list[Processor] = [
        sanitise_context,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if console:
        # with --verbose the log file receives the console rendering too
        return chain + [structlog.processors.ExceptionRenderer(), structlog.dev.ConsoleRenderer(colors=True)]
    return chain + [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def configure_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    enable_console: bool = False,
    force: bool = False,
) -> None:
    """Install the kegbin handlers on the root logger.

    Args:
        level: Level name such as "DEBUG" or "INFO".
        log_file: File to write to instead of ``default_log_dir()/kegbin.log``.
        enable_console: Render events on stderr as well, for ``--verbose``.
        force: Reconfigure even if logging was already set up. The CLI
            passes this because importing any module has already
            configured the defaults through ``get_logger``.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    for handler in list(logging.root.handlers):
        logging.root.removeHandler(handler)
        handler.close()

    numeric_level = getattr(logging, level.upper())

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(console_handler)

    structlog.configure(
        processors=_processors(enable_console),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.root.setLevel(numeric_level)
    logging.root.addHandler(_file_handler(log_file, numeric_level))

    _CONFIGURED = True


def get_logger(name: str = "kegbin") -> FilteringBoundLogger:
    """A structlog logger, configuring the defaults on first use.

    Usage:
        log = get_logger(__name__)
        log.info("install_stage", stage="downloading", package="foo", url=url)

    Context keys used across kegbin:
        - package (str): Package name or the identifier the user typed
        - version / constraint (str): Selected version and requested range
        - stage (str): InstallStage value of a running or failed install
        - url / repository (str): Download or formula repository address
        - archive / path (str): Archive file name or store path involved
        - returncode (int): Exit status of git or a hook script
        - duration_ms (int): Elapsed time of a finished operation
        - error_type / error (str): Exception class and message on failure
    """
    if not _CONFIGURED:
        configure_logging()
    return structlog.get_logger(name)
