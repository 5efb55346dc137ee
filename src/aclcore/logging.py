"""Logging utilities for aclcore.

This module provides:
- Logging configuration from AclConfig
- Safe, length-bounded previews of logged values
- A formatter that lifts ACL context (request_id, object_identity) out of
  log records, as JSON or plain text
- A logger adapter that stamps a request_id on every record
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .config import AclConfig, LogLevel
from .identity import ObjectIdentity

_CONTEXT_FIELDS = ("request_id", "object_identity")

_STANDARD_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName", "relativeCreated",
        "thread", "threadName", "exc_info", "exc_text", "stack_info",
        "taskName",
    }
)


def safe_preview(value: Any, limit: int = 240) -> str:
    """Create a single-line, length-bounded preview of a value for logging.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A truncated string representation
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    elif isinstance(value, (set, frozenset, tuple)):
        s = ", ".join(sorted(str(v) for v in value))
    else:
        s = str(value)

    s = " ".join(s.split())

    if len(s) > limit:
        return s[: limit - 1] + "…"

    return s


class AclLogFormatter(logging.Formatter):
    """Formatter that includes ACL request context.

    This formatter:
    - Extracts request_id and object_identity from log records (if available)
    - Formats logs as JSON or plain text
    - Bounds every extra field with safe_preview
    """

    def __init__(
        self,
        json_format: bool = True,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_data[key] = str(value)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in _CONTEXT_FIELDS:
                log_data[key] = safe_preview(value)

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            f"{log_data['level']}",
            f"{log_data['logger']}",
        ]
        for key in _CONTEXT_FIELDS:
            if key in log_data:
                parts.append(f"{key}={log_data[key]}")
        parts.append(f": {log_data['message']}")
        text = " ".join(parts)
        if "exception" in log_data:
            text = f"{text}\n{log_data['exception']}"
        return text


class AclLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds request_id (and optionally object_identity) to records.

    Usage:
        logger = get_acl_logger(__name__, request_id="req-42")
        logger.info("Resolved ACL", object_identity=ObjectIdentity("Document", 5))
    """

    def __init__(self, logger: logging.Logger, request_id: Optional[str] = None):
        super().__init__(logger, {})
        self.request_id = request_id

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        request_id = kwargs.pop("request_id", self.request_id)
        object_identity = kwargs.pop("object_identity", None)

        extra = kwargs.get("extra", {})
        if request_id:
            extra["request_id"] = request_id
        if isinstance(object_identity, ObjectIdentity):
            extra["object_identity"] = str(object_identity)
        kwargs["extra"] = extra

        return msg, kwargs


def setup_logging(
    config: Optional[AclConfig] = None,
    json_format: Optional[bool] = None,
) -> None:
    """Configure the ``aclcore`` logger hierarchy.

    Args:
        config: AclConfig instance (if None, loads from environment)
        json_format: Override config.log_json
    """
    if config is None:
        from .config import load_config_from_env

        config = load_config_from_env()

    level_map = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.CRITICAL: logging.CRITICAL,
    }
    log_level = level_map.get(config.log_level, logging.INFO)

    package_logger = logging.getLogger("aclcore")
    package_logger.setLevel(log_level)

    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(log_level)
    handler.setFormatter(AclLogFormatter(json_format=config.log_json if json_format is None else json_format))
    package_logger.addHandler(handler)
    package_logger.propagate = False


def get_acl_logger(name: str, request_id: Optional[str] = None) -> AclLoggerAdapter:
    """Get a logger adapter stamping ``request_id`` on every record.

    Example:
        logger = get_acl_logger(__name__, request_id=request.id)
        logger.info("ACL not found", object_identity=oid)
    """
    return AclLoggerAdapter(logging.getLogger(name), request_id=request_id)


__all__ = [
    "AclLogFormatter",
    "AclLoggerAdapter",
    "get_acl_logger",
    "safe_preview",
    "setup_logging",
]
