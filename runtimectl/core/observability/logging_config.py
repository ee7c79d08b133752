"""
Logging configuration — one setup call per process, made by main.py.

Every module logs through ``logging.getLogger(__name__)``; nothing else
configures handlers.

Level precedence:
    CLI flag  >  RUNTIMECTL_LOG_LEVEL  >  WARNING

A second, file-only destination can be enabled with
RUNTIMECTL_LOG_FILE (and its own level via RUNTIMECTL_LOG_FILE_LEVEL).
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping

ENV_LOG_LEVEL = "RUNTIMECTL_LOG_LEVEL"
ENV_LOG_FILE = "RUNTIMECTL_LOG_FILE"
ENV_LOG_FILE_LEVEL = "RUNTIMECTL_LOG_FILE_LEVEL"

# ── Formats ─────────────────────────────────────────────────────

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-7s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    logging.WARNING: ("%(levelname)s: %(message)s", None),
}

_FILE_FORMAT = "%(asctime)s %(process)d %(levelname)-7s %(name)s:%(lineno)d — %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Library loggers kept at WARNING unless running at DEBUG
_THIRD_PARTY = ("urllib3", "urllib.request")


def resolve_level(cli_level: str | None, env: Mapping[str, str] | None = None) -> str:
    """Pick the console level name from the CLI flag, then the environment."""
    env = os.environ if env is None else env
    if cli_level:
        return cli_level.upper()
    return (env.get(ENV_LOG_LEVEL) or "WARNING").upper()


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name.
        log_file: Optional log file path.
        log_file_level: File level name (default: same as ``level``).
        quiet_third_party: Keep library loggers at WARNING above DEBUG.
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(console)

    root_level = console_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root_level = min(root_level, file_level)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(file_handler)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _THIRD_PARTY:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def setup_from_env(cli_level: str | None = None, env: Mapping[str, str] | None = None) -> str:
    """setup_logging() driven by the CLI flag and RUNTIMECTL_* variables.

    Returns:
        The console level name that was applied.
    """
    env = os.environ if env is None else env
    level = resolve_level(cli_level, env)
    setup_logging(
        level=level,
        log_file=env.get(ENV_LOG_FILE) or None,
        log_file_level=env.get(ENV_LOG_FILE_LEVEL) or None,
    )
    return level


def _console_format(level: int) -> tuple[str, str | None]:
    if level <= logging.DEBUG:
        return _CONSOLE_FORMATS[logging.DEBUG]
    if level <= logging.INFO:
        return _CONSOLE_FORMATS[logging.INFO]
    return _CONSOLE_FORMATS[logging.WARNING]


def _parse_level(level: str | None) -> int:
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING
