from __future__ import annotations

import logging
import uuid
from contextlib import AbstractContextManager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

_CORRELATION_ID: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_OWNER_ID: ContextVar[str | None] = ContextVar("owner_id", default=None)
_OPERATION: ContextVar[str | None] = ContextVar("operation", default=None)

logger = logging.getLogger(__name__)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    return _CORRELATION_ID.get()


def set_correlation_id(correlation_id: str | None) -> Token[str | None]:
    return _CORRELATION_ID.set(correlation_id)


def reset_correlation_id(token: Token[str | None]) -> None:
    _CORRELATION_ID.reset(token)


def get_owner_id() -> str | None:
    return _OWNER_ID.get()


def set_owner_id(owner_id: str | None) -> Token[str | None]:
    return _OWNER_ID.set(owner_id)


def reset_owner_id(token: Token[str | None]) -> None:
    _OWNER_ID.reset(token)


def get_operation() -> str | None:
    return _OPERATION.get()


class OperationContext(AbstractContextManager["OperationContext"]):
    """Agrupa los logs de una operación de sync bajo un mismo correlation_id.

    Si ya hay un correlation_id activo (por ejemplo, un pull lanzado dentro de
    un `init_cloud`) se reutiliza para que toda la traza quede enlazada.
    """

    def __init__(self, operation_name: str, *, owner_id: str | None = None) -> None:
        self.operation_name = operation_name
        self.correlation_id = get_correlation_id() or generate_correlation_id()
        self.owner_id = owner_id
        self.elapsed_ms = 0.0
        self._started_at = 0.0
        self._correlation_token: Token[str | None] | None = None
        self._owner_token: Token[str | None] | None = None
        self._operation_token: Token[str | None] | None = None

    def __enter__(self) -> "OperationContext":
        self._correlation_token = set_correlation_id(self.correlation_id)
        self._operation_token = _OPERATION.set(self.operation_name)
        if self.owner_id is not None:
            self._owner_token = set_owner_id(self.owner_id)
        self._started_at = perf_counter()
        logger.debug("Inicio %s", self.operation_name)
        return self

    def __exit__(self, exc_type: object, exc: object, exc_tb: object) -> None:
        self.elapsed_ms = (perf_counter() - self._started_at) * 1000
        logger.debug("Fin %s (%.1f ms)", self.operation_name, self.elapsed_ms)
        if self._owner_token is not None:
            reset_owner_id(self._owner_token)
        if self._operation_token is not None:
            _OPERATION.reset(self._operation_token)
        if self._correlation_token is not None:
            reset_correlation_id(self._correlation_token)
        return None


def log_event(target_logger: Any, event_name: str, payload: dict[str, Any]) -> dict[str, Any]:
    correlation_id = get_correlation_id()
    event = {
        "event": event_name,
        "correlation_id": correlation_id,
        "owner_id": get_owner_id(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    target_logger.info(
        event_name,
        extra={
            "correlation_id": correlation_id,
            "extra": event,
        },
    )
    return event
