from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from inmogestor.core.observability import get_correlation_id, get_operation, get_owner_id

DEFAULT_LOG_MAX_BYTES = 1_048_576
DEFAULT_LOG_BACKUP_COUNT = 10
MAIN_LOG_NAME = "seguimiento.log"
ERROR_OPERATIVO_LOG_NAME = "error_operativo.log"
CRASH_LOG_NAME = "crash.log"
MAX_BYTES_ENV = "INMOGESTOR_LOG_MAX_BYTES"

# Librerías de Google y gRPC muy verbosas en INFO.
NOISY_LOGGERS = ("google", "grpc", "urllib3")


@dataclass(frozen=True)
class LogFileSpec:
    filename: str
    min_level: int
    max_level: int | None = None


LOG_FILES: tuple[LogFileSpec, ...] = (
    LogFileSpec(MAIN_LOG_NAME, logging.NOTSET),
    # Fallos absorbidos (red, cuota, datos corruptos); los CRITICAL van aparte.
    LogFileSpec(ERROR_OPERATIVO_LOG_NAME, logging.ERROR, max_level=logging.ERROR),
    LogFileSpec(CRASH_LOG_NAME, logging.CRITICAL),
)


class JsonLinesFormatter(logging.Formatter):
    """Una línea JSON por evento, con la operación de sync y el propietario activos."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "modulo": record.module,
            "funcion": record.funcName,
            "mensaje": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }
        for field_name, fallback in (("owner_id", get_owner_id), ("operation", get_operation)):
            value = getattr(record, field_name, None) or fallback()
            if value:
                event[field_name] = value

        payload_extra = getattr(record, "extra", None)
        if isinstance(payload_extra, dict) and payload_extra:
            event["extra"] = payload_extra
        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


class LevelRangeFilter(logging.Filter):
    def __init__(self, min_level: int, max_level: int | None = None) -> None:
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno < self.min_level:
            return False
        return self.max_level is None or record.levelno <= self.max_level


def _max_bytes_from_env(default: int) -> int:
    raw_value = os.getenv(MAX_BYTES_ENV)
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _handler_for(spec: LogFileSpec, log_dir: Path, *, max_bytes: int, backup_count: int, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        log_dir / spec.filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(max(level, spec.min_level))
    handler.setFormatter(JsonLinesFormatter())
    handler.addFilter(LevelRangeFilter(spec.min_level, spec.max_level))
    return handler


def configure_logging(
    log_dir: Path,
    *,
    max_bytes: int | None = None,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = logging.INFO,
) -> None:
    """Sustituye los handlers del logger raíz por los tres ficheros rotativos."""
    log_dir.mkdir(parents=True, exist_ok=True)
    resolved_max_bytes = max_bytes or _max_bytes_from_env(DEFAULT_LOG_MAX_BYTES)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(level)
    for spec in LOG_FILES:
        root_logger.addHandler(
            _handler_for(spec, log_dir, max_bytes=resolved_max_bytes, backup_count=backup_count, level=level)
        )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def log_operational_error(
    logger: logging.Logger,
    message: str,
    *,
    exc: BaseException | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    """Registra un fallo esperado que se absorbe (red, cuota, datos corruptos)."""
    exc_info: Any = (type(exc), exc, exc.__traceback__) if exc is not None else False
    logger.error(message, exc_info=exc_info, extra={"extra": extra} if extra else None)
