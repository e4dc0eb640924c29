"""
Structured logging for kvps.

Every logger lives under the ``kvps`` namespace. Log calls take keyword
fields that end up in the record's ``extra`` dict, together with the store
and operation currently set through ``log_context()``:

    logger = get_logger(__name__)

    with log_context(store="s3", operation="delete_many"):
        logger.debug("Deleted objects", count=1000)

Handlers are installed lazily from ``kvps.config.Settings`` on the first
``get_logger()`` call: a rich console handler, plus a JSON-lines file
handler when ``KVPS_LOG_FILE`` is set. Applications that configure logging
themselves can call ``setup_logging()`` directly.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import partialmethod
from pathlib import Path
from typing import Any, Iterator

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

NAMESPACE = "kvps"

# Libraries the backends drive that log too much below WARNING
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "aiosqlite")

_store_var: ContextVar[str | None] = ContextVar("kvps_store", default=None)
_operation_var: ContextVar[str | None] = ContextVar("kvps_operation", default=None)

_RESERVED = frozenset({"exc_info", "stack_info", "stacklevel"})


def get_store() -> str | None:
    """Current store label, usually the connection scheme."""
    return _store_var.get()


def get_operation() -> str | None:
    return _operation_var.get()


def current_context() -> dict[str, str]:
    """The context fields that are currently set."""
    context: dict[str, str] = {}
    store = _store_var.get()
    operation = _operation_var.get()
    if store:
        context["store"] = store
    if operation:
        context["operation"] = operation
    return context


@contextmanager
def log_context(store: str | None = None, operation: str | None = None) -> Iterator[None]:
    """Scope a store label and/or operation name to the enclosed block.

    Arguments left as None keep the enclosing value. The previous values are
    restored on exit, also when the block raises.
    """
    tokens = []
    if store is not None:
        tokens.append((_store_var, _store_var.set(store)))
    if operation is not None:
        tokens.append((_operation_var, _operation_var.set(operation)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log files."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **current_context(),
        }

        fields = getattr(record, "extra", None)
        if fields:
            payload["extra"] = {k: v for k, v in fields.items() if k not in payload}
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(payload, default=str).decode()


class ContextRichHandler(RichHandler):
    """Console handler that prefixes the level with the store and operation."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)
        store = get_store()
        operation = get_operation()
        if not store and not operation:
            return level_text

        text = level_text.copy()
        if store:
            text.append(f" {store}", style="cyan")
        if operation:
            text.append(f" {operation}", style="magenta")
        return text


class ContextLogger:
    """Wraps a standard logger; keyword arguments become structured fields."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def log(self, level: int, msg: str, *args: Any, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return

        options = {k: fields.pop(k) for k in _RESERVED & fields.keys()}
        extra = {**current_context(), **fields.pop("extra", {}), **fields}
        self._logger.log(level, msg, *args, extra={"extra": extra}, **options)

    debug = partialmethod(log, logging.DEBUG)
    info = partialmethod(log, logging.INFO)
    warning = partialmethod(log, logging.WARNING)
    error = partialmethod(log, logging.ERROR)
    exception = partialmethod(log, logging.ERROR, exc_info=True)


_configured = False


def _console_handler(level: int) -> logging.Handler:
    handler = ContextRichHandler(
        console=Console(stderr=True),
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    return handler


def _file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setFormatter(JSONFormatter())
    handler.setLevel(logging.DEBUG)
    return handler


def setup_logging(
    log_level: str = "WARNING",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """(Re)configure the ``kvps`` logger namespace.

    Args:
        log_level: Level name for the namespace and the console handler.
        log_file: Optional JSON-lines file; it receives every record that
            passes the namespace level.
        console_output: Whether to attach the rich console handler.
    """
    global _configured

    level = logging.getLevelName(log_level.upper())
    base = logging.getLogger(NAMESPACE)
    base.setLevel(level)
    base.handlers.clear()
    base.propagate = False

    if log_file:
        base.addHandler(_file_handler(log_file))
    if console_output:
        base.addHandler(_console_handler(level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> ContextLogger:
    """Get a namespaced context logger, configuring logging on first use."""
    if not _configured:
        from kvps.config import get_settings

        settings = get_settings()
        setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    if name != NAMESPACE and not name.startswith(f"{NAMESPACE}."):
        name = f"{NAMESPACE}.{name}"
    return ContextLogger(logging.getLogger(name))
