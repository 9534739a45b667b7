"""Logging setup: JSON records, request correlation and field scrubbing.

Throttle and cache events carry client addresses and cache keys in their
``extra`` payload. Before a record is written:
- secrets (tokens, cookies, card numbers) are replaced by ``[REDACTED]``;
- client addresses are replaced by a short digest, so one client's events
  can still be grouped without storing the address itself;
- long string values (cache keys, search terms) are truncated.

The request id set by ``request_id_middleware`` is attached to every record
emitted while the request is being handled.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from storefront.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "[REDACTED]"

SENSITIVE_KEYS_DEFAULT: set[str] = {
    "authorization",
    "cookie",
    "set-cookie",
    "token",
    "secret",
    "password",
    "email",
    "card_number",
}

# Values under these keys are replaced by hash_identifier(value)
HASHED_KEYS_DEFAULT: set[str] = {
    "client_ip",
    "identifier",
    "x-forwarded-for",
    "x-real-ip",
}

MAX_VALUE_LENGTH = 256

# Standard LogRecord attributes; everything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_INSTALLED_MARKER = "_storefront_handler"


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identifier(value: str) -> str:
    """Short, stable digest of a client identifier for log correlation.

    Examples:
        >>> len(hash_identifier("203.0.113.7"))
        16
    """

    return hashlib.sha256(str(value).encode()).hexdigest()[:16]


class FieldScrubber:
    """Applies the redaction, hashing and truncation rules to log fields."""

    def __init__(
        self,
        sensitive_keys: Iterable[str] | None = None,
        hashed_keys: Iterable[str] | None = None,
        max_value_length: int = MAX_VALUE_LENGTH,
    ) -> None:
        self.sensitive_keys = {k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT)}
        self.hashed_keys = {k.lower() for k in (hashed_keys or HASHED_KEYS_DEFAULT)}
        self.max_value_length = max_value_length

    def scrub_field(self, key: str, value: Any) -> Any:
        lowered = str(key).lower()
        if lowered in self.sensitive_keys:
            return REDACTED
        if lowered in self.hashed_keys and value is not None:
            return hash_identifier(value)
        return self.scrub_value(value)

    def scrub_value(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {k: self.scrub_field(k, v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.scrub_value(v) for v in value)
        if isinstance(value, str) and len(value) > self.max_value_length:
            return value[: self.max_value_length] + "..."
        return value

    def extras(self, record: LogRecord) -> dict[str, Any]:
        """Scrubbed copy of the ``extra`` fields attached to ``record``."""

        return {
            key: self.scrub_field(key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub ``extra`` fields in place so every formatter sees safe values."""

    def __init__(
        self,
        sensitive_keys: Iterable[str] | None = None,
        hashed_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__()
        self.scrubber = FieldScrubber(sensitive_keys, hashed_keys)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "_scrubbed", False):
            return True
        for key, value in self.scrubber.extras(record).items():
            setattr(record, key, value)
        record._scrubbed = True
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, event, extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        hashed_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.scrubber = FieldScrubber(sensitive_keys, hashed_keys)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        if getattr(record, "_scrubbed", False):
            extras = {
                k: v for k, v in record.__dict__.items()
                if k not in _RECORD_ATTRS and not k.startswith("_")
            }
        else:
            extras = self.scrubber.extras(record)
        payload.update(extras)

        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/storefront.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            file_path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(file_path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the storefront handler on the root logger.

    Safe to call repeatedly (each app instance calls it): the handler
    installed by a previous call is replaced, other handlers such as pytest's
    capture handler are left alone.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())

    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())
    setattr(handler, _INSTALLED_MARKER, True)

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, _INSTALLED_MARKER, False):
            root_logger.removeHandler(existing)
            existing.close()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # uvicorn installs its own handlers; keep its records out of ours
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
