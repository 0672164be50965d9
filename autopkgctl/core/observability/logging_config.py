"""
Logging configuration — one setup call per process.

main.py calls ``setup_logging`` once; every module logs through
``logging.getLogger(__name__)`` and inherits it.

Console level precedence:
    --debug / --verbose / --quiet  >  AUTOPKG_LOG_LEVEL  >  WARNING

A log file (AUTOPKG_LOG_FILE) always records full detail at its own
level, so CI artifacts keep DEBUG output even when the console is quiet.
"""

from __future__ import annotations

import logging
import sys

# Console formats, keyed by the most verbose level they serve. CI logs
# already carry timestamps, so only INFO/DEBUG add one.
_CONSOLE_FORMATS = (
    (logging.DEBUG, "%(asctime)s %(levelname)-7s %(name)s:%(lineno)d  %(message)s"),
    (logging.INFO, "%(asctime)s %(name)s  %(message)s"),
)
_CONSOLE_DEFAULT = "%(message)s"
_CONSOLE_DATEFMT = "%H:%M:%S"

_FILE_FORMAT = "%(asctime)s %(levelname)-7s %(threadName)s %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def resolve_level(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    env_level: str | None = None,
) -> str:
    """Pick the console level from CLI flags, falling back to the env value."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return (env_level or "WARNING").upper()


def _console_format(level: int) -> str:
    for threshold, fmt in _CONSOLE_FORMATS:
        if level <= threshold:
            return fmt
    return _CONSOLE_DEFAULT


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger.

    Replaces any handlers already installed, so calling it again (as the
    CLI does per invocation) never duplicates output.

    Args:
        level: Console level name.
        log_file: Optional path of a log file.
        log_file_level: Level for the file; defaults to DEBUG.
    """
    console_level = _parse_level(level)
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(_console_format(console_level), datefmt=_CONSOLE_DATEFMT))

    handlers: list[logging.Handler] = [console]
    if log_file:
        handlers.append(_file_handler(log_file, _parse_level(log_file_level or "DEBUG")))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    # Root must pass everything the chattiest handler wants
    root.setLevel(min(h.level for h in handlers))
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value (WARNING when unknown)."""
    numeric = logging.getLevelName((level or "").upper())
    return numeric if isinstance(numeric, int) else logging.WARNING
