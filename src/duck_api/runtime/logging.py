"""
Logging for duck-api.

All records flow through the ``duck_api`` logger; modules obtain children with
``logging.getLogger(__name__)`` or, when they want a tagged component name on
the console, with ``get_logger("API")``.

``setup_logging`` installs two handlers on that logger:

- stdout, a compact ``HH:MM:SS [component] message`` line (ANSI colours unless
  ``NO_COLOR`` is set or stdout is not a terminal)
- optionally ``<log_dir>/duck-api.log``, rotated, one JSON object per line so
  the file can be tailed and parsed by ``get_recent_logs``
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

ROOT_LOGGER = "duck_api"
LOG_FILE_NAME = "duck-api.log"

_PLAIN = bool(os.environ.get("NO_COLOR")) or not sys.stdout.isatty()


def _ansi(code: str) -> str:
    return "" if _PLAIN else f"\033[{code}m"


class Colors:
    """ANSI sequences used by the console formatter (empty when plain)."""

    RESET = _ansi("0")
    DIM = _ansi("2")

    API = _ansi("34")
    DUCK = _ansi("35")


_LEVEL_COLORS = {
    logging.DEBUG: _ansi("36"),
    logging.WARNING: _ansi("33"),
    logging.ERROR: _ansi("31"),
    logging.CRITICAL: _ansi("1;31"),
}


def _paint(text: str, color: str) -> str:
    return f"{color}{text}{Colors.RESET}" if color else text


def _component(record: logging.LogRecord) -> str:
    """Explicit ``component`` extra, else the last segment of the logger name."""
    component = getattr(record, "component", None)
    if component:
        return str(component)
    _, _, tail = record.name.rpartition(".")
    return tail if tail and tail != ROOT_LOGGER else "duck"


def _utc_timestamp(created: float) -> str:
    stamp = datetime.fromtimestamp(created, UTC).isoformat(timespec="microseconds")
    return stamp.removesuffix("+00:00") + "Z"


def _source(record: logging.LogRecord) -> dict[str, Any]:
    source: dict[str, Any] = {"file": record.pathname, "line": record.lineno}
    if record.funcName and record.funcName != "<module>":
        source["function"] = record.funcName
    return {key: value for key, value in source.items() if value}


class JSONLFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, component, message.

    ``context`` (from ``log_with_context``) is kept verbatim, warnings and
    above also carry their source location, and exceptions are flattened into
    type, message and traceback.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "component": _component(record),
            "message": record.getMessage(),
        }
        if context := getattr(record, "context", None):
            entry["context"] = context
        if record.levelno >= logging.WARNING and (source := _source(record)):
            entry["source"] = source
        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short terminal lines; the level is only spelled out when it is not INFO."""

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = f"[{_component(record)}]"
        if _PLAIN:
            parts = [f"[{clock}]", tag]
        else:
            parts = [
                _paint(clock, Colors.DIM),
                _paint(tag, getattr(record, "component_color", Colors.DUCK)),
            ]
        if record.levelno != logging.INFO:
            parts.append(_paint(f"{record.levelname}:", _LEVEL_COLORS.get(record.levelno, "")))
        parts.append(record.getMessage())

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _ComponentFilter(logging.Filter):
    """Stamps ``component`` and its colour on records that lack them."""

    def __init__(self, component: str, color: str):
        super().__init__()
        self.component = component
        self.color = color

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            record.component = self.component
        if not hasattr(record, "component_color"):
            record.component_color = self.color
        return True


_component_loggers: dict[str, logging.Logger] = {}
_log_dir: Path | None = None


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level}")
    return number


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | str = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path | None:
    """
    (Re)configure the ``duck_api`` logger.

    Args:
        log_dir: Where ``duck-api.log`` goes; ``None`` keeps logging on the console
        level: Threshold as a number or a name such as ``"debug"``
        max_bytes: Rotation size of the JSONL file
        backup_count: Rotated files kept next to the live one

    Returns:
        The log directory, or ``None`` without file logging
    """
    global _log_dir

    threshold = _level_number(level)
    root = logging.getLogger(ROOT_LOGGER)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(threshold)
    root.propagate = False

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter())
    root.addHandler(console)

    _log_dir = Path(log_dir) if log_dir is not None else None
    if _log_dir is None:
        return None

    _log_dir.mkdir(parents=True, exist_ok=True)
    log_file = _log_dir / LOG_FILE_NAME
    jsonl = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    jsonl.setFormatter(JSONLFormatter())
    root.addHandler(jsonl)
    log_with_context(root, logging.DEBUG, "JSONL logging enabled", log_file=str(log_file))
    return _log_dir


def get_logger(component: str, color: str = Colors.DUCK) -> logging.Logger:
    """Child of ``duck_api`` whose records are tagged ``component`` on the console."""
    logger = _component_loggers.get(component)
    if logger is None:
        suffix = component.lower().replace(" ", "_")
        logger = logging.getLogger(f"{ROOT_LOGGER}.{suffix}")
        logger.addFilter(_ComponentFilter(component, color))
        _component_loggers[component] = logger
    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    **fields: Any,
) -> None:
    """Log ``message`` with structured ``context`` (merged with keyword fields)."""
    merged = {**(context or {}), **fields}
    logger.log(level, message, extra={"context": merged} if merged else None)


def get_log_file() -> Path | None:
    return _log_dir / LOG_FILE_NAME if _log_dir else None


def get_recent_logs(count: int = 50, level: str | None = None) -> list[dict[str, Any]]:
    """Last ``count`` parsed entries of the JSONL file, optionally of one level only."""
    log_file = get_log_file()
    if log_file is None or not log_file.exists():
        return []

    wanted = level.upper() if level else None
    entries: list[dict[str, Any]] = []
    for line in log_file.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if wanted is None or entry.get("level") == wanted:
            entries.append(entry)
    return entries[-count:]
