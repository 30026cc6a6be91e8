"""
Logging setup for APIRunner.

Every module logs through ``get_logger(__name__)``; records end up on the
``apirunner`` root logger, formatted either as JSON lines or as plain text.
Credentials and tokens are redacted from structured output.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from apirunner.config import settings

ROOT_LOGGER_NAME = "apirunner"

_RESERVED_RECORD_KEYS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName",
}

SENSITIVE_KEYS = {
    "token", "password", "secret", "authorization", "auth",
    "credential", "credentials", "clientid", "jwt", "access_token",
}


class StructuredFormatter(logging.Formatter):
    """
    Formatter emitting one JSON object per log record.

    Extra fields passed through ``extra=`` become top level keys. When
    sanitization is enabled, values stored under sensitive keys are redacted.
    """

    def __init__(self, sanitize: bool = True):
        """
        Args:
            sanitize: Redact credential values before serializing
        """
        super().__init__()
        self.sanitize = sanitize

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        if self.sanitize:
            log_entry = self._sanitize_log_entry(log_entry)

        return json.dumps(log_entry, ensure_ascii=False, separators=(',', ':'), default=str)

    def _sanitize_log_entry(self, log_entry: Dict[str, Any]) -> Dict[str, Any]:
        """Redact values under sensitive keys and authorization header values."""
        def sanitize_value(obj: Any) -> Any:
            if isinstance(obj, dict):
                return {
                    k: "[REDACTED]" if str(k).lower() in SENSITIVE_KEYS else sanitize_value(v)
                    for k, v in obj.items()
                }
            elif isinstance(obj, list):
                return [sanitize_value(item) for item in obj]
            elif isinstance(obj, str):
                lowered = obj.lower()
                # Authorization header values
                if lowered.startswith("bearer ") or lowered.startswith("basic "):
                    return f"{obj.split(' ', 1)[0]} [REDACTED]"
                return obj
            else:
                return obj

        return sanitize_value(log_entry)


class SimpleFormatter(logging.Formatter):
    """One readable line per record, used by the CLI in verbose mode."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)8s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )


def setup_logger(
    name: Optional[str] = None,
    level: Optional[str] = None,
    log_format: Optional[str] = None
) -> logging.Logger:
    """
    Configure the package root logger, or return a module logger below it.

    Only the package root logger gets a handler; module loggers below it
    propagate to it, so calling this again with a new level or format
    reconfigures every module at once.

    Args:
        name: Logger name (defaults to 'apirunner')
        level: Log level (defaults to settings.log_level)
        log_format: Format type ('structured' or 'simple', defaults to settings.log_format)

    Returns:
        The logger
    """
    logger_name = name or ROOT_LOGGER_NAME
    logger = logging.getLogger(logger_name)

    if logger_name != ROOT_LOGGER_NAME and logger_name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logger

    log_level = (level or settings.log_level).upper()
    format_type = log_format or settings.log_format

    if format_type == "structured":
        formatter: logging.Formatter = StructuredFormatter(sanitize=settings.sanitize_logs)
    else:
        formatter = SimpleFormatter()

    logger.setLevel(getattr(logging, log_level))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        logger.addHandler(handler)
        logger.propagate = False

    for handler in logger.handlers:
        handler.setLevel(getattr(logging, log_level))
        handler.setFormatter(formatter)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return the logger for a module, usually called as ``get_logger(__name__)``.

    Without a name, the calling module's ``__name__`` is used.
    """
    if name is None:
        import inspect
        frame = inspect.currentframe()
        if frame and frame.f_back:
            name = frame.f_back.f_globals.get("__name__", ROOT_LOGGER_NAME)
        else:
            name = ROOT_LOGGER_NAME

    return setup_logger(name)


# Package root logger
logger = setup_logger()
