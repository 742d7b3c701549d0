"""
Structured JSON Logging Module.

Every record becomes one JSON object on stdout and in a rotating audit
file.  Caller-supplied context (``extra={"event": ...}``) is nested
under ``"extra"``; any extra field whose name looks like a credential
is masked before it is written, so a token passed by mistake never
reaches the log.

Usage::

    log = StructuredLogger(name="session")
    log.info("Device registered", extra={"event": "DEVICE_REGISTERED"})
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

REDACTED: str = "***"

# Extra-field names containing any of these are masked.
_SENSITIVE_FRAGMENTS: tuple[str, ...] = ("token", "password", "secret", "authorization")


class JSONFormatter(logging.Formatter):
    """Formats log records as structured JSON objects.

    Keys: ``timestamp`` (ISO-8601, UTC), ``level``, ``logger_name``,
    ``message``, and when present ``extra`` and ``exception``.
    """

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Union[str, dict[str, str]]] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        extra_fields = self._extra_fields(record)
        if extra_fields:
            entry["extra"] = extra_fields

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)

    def _extra_fields(self, record: logging.LogRecord) -> dict[str, str]:
        fields: dict[str, str] = {}
        for key, value in record.__dict__.items():
            if key in self._STANDARD_ATTRS:
                continue
            lowered = key.lower()
            if any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS):
                fields[key] = REDACTED
            else:
                fields[key] = str(value)
        return fields


class StructuredLogger:
    """Injectable logger.

    Construct one per component and pass it through the constructor of
    whatever needs to log.  The wrapped ``logging.Logger`` is available
    as :attr:`logger`.

    Parameters
    ----------
    name:
        Logger name.  Reusing a name reuses the configured handlers.
    level:
        Threshold; defaults to ``AppConfig.LOG_LEVEL``.
    stream:
        Console stream; defaults to ``sys.stdout``.
    log_file / max_bytes / backup_count:
        Rotating audit file settings; default to the ``LOG_*`` config
        values.  When the file cannot be opened the logger stays
        console-only and says so once.
    """

    def __init__(
        self,
        name: str = "eprometna",
        level: Optional[int] = None,
        stream: Union[TextIO, None] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Lazy import to avoid circular dependency at module level
        from eprometna.config import get_config
        cfg = get_config()

        resolved_level: int = (
            level if level is not None
            else logging.getLevelName(cfg.LOG_LEVEL.upper())
        )
        if not isinstance(resolved_level, int):
            resolved_level = logging.INFO

        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(resolved_level)

        if not self._logger.handlers:
            self._attach_handlers(
                level=resolved_level,
                stream=stream or sys.stdout,
                log_file=log_file or cfg.LOG_FILE,
                max_bytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backup_count=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
            )

    def _attach_handlers(
        self,
        level: int,
        stream: TextIO,
        log_file: str,
        max_bytes: int,
        backup_count: int,
    ) -> None:
        formatter = JSONFormatter()

        console = logging.StreamHandler(stream)
        console.setLevel(level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            audit_file = RotatingFileHandler(
                filename=str(log_path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Could not open log file '%s': %s. Logging to console only.",
                log_file,
                exc,
            )
            return
        audit_file.setLevel(level)
        audit_file.setFormatter(formatter)
        self._logger.addHandler(audit_file)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "eprometna") -> StructuredLogger:
    """Return a ``StructuredLogger`` named *name* with config defaults."""
    return StructuredLogger(name=name)
