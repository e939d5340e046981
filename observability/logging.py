"""Logging setup with structured output and per-run context.

Every record carries the current run id and the site being scanned, so a
multi-site run can be followed line by line in either text or JSON output.

Usage:
    >>> from observability.logging import setup_logging, set_run_context
    >>> setup_logging(config)
    >>> set_run_context(run_id="a1b2c3d4")
    >>> with site_context("https://shop.example"):
    ...     logger.info("Fetched products | count=%d", 12)
"""

import contextvars
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any

LOG_FILE_NAME = "shopguard.log"
NO_CONTEXT = "-"

run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default=NO_CONTEXT)
site_var: contextvars.ContextVar[str] = contextvars.ContextVar("site", default=NO_CONTEXT)

# Attributes every LogRecord has; anything else came in through `extra=`
_BUILTIN_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "run_id", "site",
}

# Chatty at DEBUG
_QUIET_LOGGERS = ("aiohttp", "httpx", "httpcore", "openai", "asyncio")


def set_run_context(run_id: str) -> None:
    """Set the run id attached to subsequent log records."""
    run_id_var.set(run_id)


@contextmanager
def site_context(site_url: str) -> Iterator[None]:
    """Attach a site URL to log records emitted inside the block."""
    token = site_var.set(site_url)
    try:
        yield
    finally:
        site_var.reset(token)


def clear_context() -> None:
    run_id_var.set(NO_CONTEXT)
    site_var.set(NO_CONTEXT)


class ContextFilter(logging.Filter):
    """Copies the run id and site from context vars onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get()
        record.site = site_var.get()
        return True


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: timestamp, level, logger, message, run_id, plus site inside a
    site scan, source for warnings and above, exception when one is
    attached, and any `extra=` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", NO_CONTEXT),
        }
        site = getattr(record, "site", NO_CONTEXT)
        if site != NO_CONTEXT:
            entry["site"] = site
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.filename}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(
            (key, _jsonable(value))
            for key, value in vars(record).items()
            if key not in _BUILTIN_ATTRS
        )
        return json.dumps(entry, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """TIMESTAMP [LEVEL] [run_id] logger: message"""

    def __init__(self, include_date: bool = False):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(run_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S" if include_date else "%H:%M:%S",
        )


def _file_handler(config: Any) -> logging.Handler:
    """Size-based rotation when log_max_bytes is set, otherwise daily."""
    path = config.log_dir / LOG_FILE_NAME
    keep = config.log_backup_count
    if config.log_max_bytes > 0:
        return RotatingFileHandler(path, maxBytes=config.log_max_bytes, backupCount=keep, encoding="utf-8")
    return TimedRotatingFileHandler(path, when="midnight", backupCount=keep, encoding="utf-8")


def _attach(root: logging.Logger, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    root.addHandler(handler)


def setup_logging(config: Any, verbose: bool = False) -> bool:
    """Replace root handlers with a console handler and a rotating log file.

    The console honours config.log_level (DEBUG with verbose); the file
    always records DEBUG. An unwritable log_dir leaves console output only.

    Returns:
        Whether the log file is active
    """
    as_json = config.log_format == "json"
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console_level = logging.DEBUG if verbose else logging.getLevelName(config.log_level)
    if not isinstance(console_level, int):
        console_level = logging.INFO
    _attach(
        root,
        logging.StreamHandler(sys.stdout),
        console_level,
        JsonFormatter() if as_json else TextFormatter(),
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    try:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        handler = _file_handler(config)
    except OSError as e:
        print(f"Warning: log directory '{config.log_dir}' is not writable ({e}); logging to console only",
              file=sys.stderr)
        return False
    _attach(root, handler, logging.DEBUG, JsonFormatter() if as_json else TextFormatter(include_date=True))
    return True
