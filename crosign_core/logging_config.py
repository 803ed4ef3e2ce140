"""
Logging setup for crosign.

Library modules only create loggers (``crosign_signing``,
``crosign_ledger``, ``crosign_transport``, ``crosign_tx``) and never
install handlers; an embedding wallet calls ``setup_logging`` once.

Records may carry signing context through ``extra=``:

    logger.info("Device refused", extra={"status_word": 0x6986})

Recognised context keys are ``chain_id``, ``address``, ``path`` and
``status_word``.  Both formats render them; nothing else from ``extra``
is emitted, so phrases, seeds and keys cannot leak through a stray
attribute.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

LOGGER_NAMES = (
    "crosign_signing",
    "crosign_ledger",
    "crosign_transport",
    "crosign_tx",
)

CONTEXT_FIELDS = ("chain_id", "address", "path", "status_word")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    ctx = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is None:
            continue
        if name == "status_word":
            value = f"0x{value:04x}"
        ctx[name] = value
    return ctx


class _JSONFormatter(logging.Formatter):
    """One JSON object per line, context fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _HumanFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message key=value ...`` with ANSI colour."""

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<7}"
        if self.colour and record.levelname in self.COLOURS:
            level = f"{self.COLOURS[record.levelname]}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        ctx = _context(record)
        if ctx:
            line += " " + " ".join(f"{k}={v}" for k, v in ctx.items())
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_handlers(fmt: str, log_file: Optional[str]) -> list[logging.Handler]:
    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(_JSONFormatter())
    else:
        console.setFormatter(_HumanFormatter(colour=sys.stderr.isatty()))
    handlers: list[logging.Handler] = [console]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(_JSONFormatter())
        handlers.append(file_handler)
    return handlers


def setup_logging(
    level: Union[str, int] = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Route the crosign loggers to stderr (and optionally a file).

    ``fmt`` selects ``"human"`` or ``"json"`` for the console; a log file
    is always JSON.  Calling again replaces the previous handlers.
    """
    handlers = _build_handlers(fmt, log_file)
    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(_resolve_level(level))
        for old in list(logger.handlers):
            logger.removeHandler(old)
            old.close()
        for handler in handlers:
            logger.addHandler(handler)
        logger.propagate = False
