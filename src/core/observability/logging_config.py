"""
Logging configuration — one setup for the CLI and the web server.

Every module logs through ``logging.getLogger(__name__)``; this module
only decides where records go and how they look.

Level precedence:
    --verbose/--debug flag  >  HOMEROUTE_LOG_LEVEL  >  WARNING

HOMEROUTE_LOG_FILE adds a file handler (HOMEROUTE_LOG_FILE_LEVEL sets
its level; it defaults to the console level).
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping

ENV_LEVEL = "HOMEROUTE_LOG_LEVEL"
ENV_FILE = "HOMEROUTE_LOG_FILE"
ENV_FILE_LEVEL = "HOMEROUTE_LOG_FILE_LEVEL"

# ── Format strings ──────────────────────────────────────────────

_FMT_MINIMAL = "%(message)s"

_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

_FMT_FILE = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# Request logs of the dev server and HTTP libraries
_NOISY_LOGGERS = ("werkzeug", "urllib3")


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Level name; falls back to HOMEROUTE_LOG_LEVEL, then WARNING.
        log_file: Optional log file; falls back to HOMEROUTE_LOG_FILE.
        log_file_level: Level of the file handler (default: ``level``).
        quiet_third_party: Keep werkzeug/urllib3 at WARNING unless DEBUG.
        environ: Environment mapping (default: ``os.environ``).
    """
    env = os.environ if environ is None else environ
    numeric_level = _parse_level(level or env.get(ENV_LEVEL))
    log_file = log_file or env.get(ENV_FILE) or None
    log_file_level = log_file_level or env.get(ENV_FILE_LEVEL)

    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(effective_level)

    if quiet_third_party and numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name → numeric level; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
