"""Logging for the sync engine: one rotating file, dotted event names, thread context.

Records carry two kinds of fields. Context fields (`thread_id`, `switch`) come
from the enclosing `log_context` block; event fields come from the `log_event`
call itself. Both are rendered after the event name so a whole switch or
resync can be followed with a single grep on `thread_id=`.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator

from tandem.config import parse_bool, parse_int, parse_level
from tandem.paths import log_dir

LOG_FILE_NAME = "tandem.log"
DEFAULT_LOG_MAX_BYTES = 5_000_000
DEFAULT_LOG_BACKUPS = 3

# Transport loggers that log every request at INFO.
HTTP_LOGGERS = ("httpx", "httpcore")

_CONTEXT: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("tandem_log_context", default={})
_LOG_FRAMES_ENABLED = False


@dataclass(frozen=True)
class LogConfig:
    log_file: Path
    level: int = logging.INFO
    http_level: int = logging.WARNING
    stderr: bool = False
    json: bool = False
    log_frames: bool = False
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUPS


def build_log_config() -> LogConfig:
    """Read `TANDEM_LOG_*` settings; the file lives in the platform log dir unless overridden."""

    directory = Path(os.getenv("TANDEM_LOG_DIR") or str(log_dir()))
    directory.mkdir(parents=True, exist_ok=True)
    return LogConfig(
        log_file=directory / LOG_FILE_NAME,
        level=parse_level(os.getenv("TANDEM_LOG_LEVEL"), logging.INFO),
        http_level=parse_level(os.getenv("TANDEM_LOG_HTTP_LEVEL"), logging.WARNING),
        stderr=parse_bool(os.getenv("TANDEM_LOG_STDERR"), False),
        json=parse_bool(os.getenv("TANDEM_LOG_JSON"), False),
        log_frames=parse_bool(os.getenv("TANDEM_LOG_FRAMES"), False),
        max_bytes=parse_int(os.getenv("TANDEM_LOG_MAX_BYTES"), DEFAULT_LOG_MAX_BYTES),
        backup_count=parse_int(os.getenv("TANDEM_LOG_BACKUPS"), DEFAULT_LOG_BACKUPS),
    )


def configure_logging(config: LogConfig) -> None:
    """Replace the root handlers with the client's file (and optional stderr) handler."""

    global _LOG_FRAMES_ENABLED
    _LOG_FRAMES_ENABLED = config.log_frames

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(config.level)

    formatter: logging.Formatter = JsonLineFormatter() if config.json else EventFormatter()
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    ]
    if config.stderr:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ThreadContextFilter())
        root.addHandler(handler)

    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(config.http_level)


def log_frames_enabled() -> bool:
    return _LOG_FRAMES_ENABLED


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach `thread_id`, `switch` and similar fields to every record in the block.

    None values are skipped so callers can pass optional ids unconditionally.
    """

    merged = {**_CONTEXT.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _CONTEXT.set(merged)
    try:
        yield
    finally:
        _CONTEXT.reset(token)


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Log a dotted event name (`stream.open`, `resync.replay`) with its fields."""

    logger.log(level, event, extra={"event_fields": fields})


def _render(value: Any) -> str:
    if isinstance(value, str):
        if not value or any(ch.isspace() or ch in '="' for ch in value):
            return json.dumps(value)
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def _pairs(fields: Dict[str, Any]) -> list[str]:
    return [f"{key}={_render(fields[key])}" for key in sorted(fields) if fields[key] is not None]


class ThreadContextFilter(logging.Filter):
    """Snapshot the active `log_context` onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 - logging API name
        record.context_fields = dict(_CONTEXT.get())
        if not hasattr(record, "event_fields"):
            record.event_fields = {}
        return True


class EventFormatter(logging.Formatter):
    """`<time> <LEVEL> <logger> <event> key=value ...`"""

    def __init__(self, fmt: str = "%(asctime)s %(levelname)s %(name)s %(message)s") -> None:
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pairs = _pairs(getattr(record, "context_fields", {})) + _pairs(getattr(record, "event_fields", {}))
        return " ".join([line, *pairs])


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        context = getattr(record, "context_fields", {})
        fields = getattr(record, "event_fields", {})
        if context:
            payload["context"] = context
        if fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)
