"""
Logging configuration — one place that decides where log lines go.

main.py calls ``setup_logging()`` before any command runs; modules only
ever do ``logger = logging.getLogger(__name__)``.

Console level, highest priority first:
    --debug / --verbose / --quiet  >  HC_LOG_LEVEL  >  WARNING

A second, usually more detailed, copy can go to a file named by
HC_LOG_FILE (level from HC_LOG_FILE_LEVEL). Results themselves are not
logged here; the report sinks own those.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ENV_LOG_LEVEL = "HC_LOG_LEVEL"
ENV_LOG_FILE = "HC_LOG_FILE"
ENV_LOG_FILE_LEVEL = "HC_LOG_FILE_LEVEL"

_DEFAULT_LEVEL = logging.WARNING

# Console format per threshold: the lowest entry whose level is >= the
# configured level wins. Debug output names the thread because provider
# invocations and multi-host runs happen off the main thread.
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(name)s  %(message)s", "%H:%M:%S"),
)
_CONSOLE_PLAIN = "%(message)s"

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Libraries that chatter below WARNING
_NOISY_LOGGERS = ("urllib3", "urllib.request", "concurrent.futures")


def resolve_level(verbose: bool = False, quiet: bool = False, debug: bool = False) -> str:
    """Console level from the global CLI flags, else HC_LOG_LEVEL."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(ENV_LOG_LEVEL, logging.getLevelName(_DEFAULT_LEVEL))


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Replace the root logger's handlers with ours.

    Args:
        level: Console level name. Unknown names mean WARNING.
        log_file: Also write to this file (parent directories are created).
        log_file_level: Level for the file; defaults to ``level``.
        quiet_third_party: Hold chatty library loggers at WARNING unless
            the console is at DEBUG.
    """
    console_level = _parse_level(level)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_console_handler(console_level))

    lowest = console_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root.addHandler(_file_handler(Path(log_file), file_level))
        lowest = min(lowest, file_level)
    root.setLevel(lowest)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # a closed stream (e.g. a finished CliRunner) must not break a run
    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_PLAIN, None
    for threshold, candidate, candidate_datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            fmt, datefmt = candidate, candidate_datefmt
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def _parse_level(level: str | None) -> int:
    if not level:
        return _DEFAULT_LEVEL
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else _DEFAULT_LEVEL
