from __future__ import annotations

import json
import logging
import sys
import threading
import traceback
import uuid
from datetime import datetime, timezone
from types import TracebackType
from typing import Any

from inmogestor.bootstrap.logging import CRASH_LOG_NAME
from inmogestor.bootstrap.settings import resolve_log_dir
from inmogestor.core.observability import generate_correlation_id, get_correlation_id, set_correlation_id


def generar_id_incidente() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


def _asegurar_correlation_id() -> str:
    correlation_id = get_correlation_id()
    if not correlation_id:
        correlation_id = generate_correlation_id()
        set_correlation_id(correlation_id)
    return correlation_id


def _append_crash_fallback(record: dict[str, Any]) -> None:
    """Escribe el incidente a mano cuando el logging ya no funciona."""
    log_dir = resolve_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    with (log_dir / CRASH_LOG_NAME).open("a", encoding="utf-8") as crash_file:
        crash_file.write(json.dumps(record, ensure_ascii=False) + "\n")


def manejar_excepcion_global(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
    *,
    hilo: str | None = None,
) -> str:
    """Registra un error de programación no controlado y devuelve su ID de incidente.

    Los fallos esperados (cuota, red, datos corruptos) nunca llegan aquí: se
    absorben en la capa de sync y se notifican por el canal lateral. `hilo`
    identifica el temporizador o listener de Firestore donde ocurrió.
    """
    incident_id = generar_id_incidente()
    correlation_id = _asegurar_correlation_id()
    extra: dict[str, Any] = {"incident_id": incident_id, "correlation_id": correlation_id}
    if hilo:
        extra["hilo"] = hilo

    try:
        logging.getLogger("inmogestor.global_exception").critical(
            "Excepción no controlada. incident_id=%s",
            incident_id,
            exc_info=(exc_type, exc_value, exc_traceback),
            extra=extra,
        )
    except Exception:  # noqa: BLE001
        _append_crash_fallback(
            {
                **extra,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "error_type": exc_type.__name__,
                "error_message": str(exc_value),
                "stacktrace": "".join(traceback.format_exception(exc_type, exc_value, exc_traceback)),
            }
        )
    return incident_id


def install_exception_hooks() -> None:
    """Enruta al registro de incidentes las excepciones del hilo principal y de los hilos de fondo."""

    def _main_hook(exc_type: type[BaseException], exc_value: BaseException, exc_traceback: TracebackType | None) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        manejar_excepcion_global(exc_type, exc_value, exc_traceback)

    def _thread_hook(args: threading.ExceptHookArgs) -> None:
        if args.exc_value is None:
            return
        thread_name = args.thread.name if args.thread is not None else None
        manejar_excepcion_global(args.exc_type, args.exc_value, args.exc_traceback, hilo=thread_name)

    sys.excepthook = _main_hook
    threading.excepthook = _thread_hook
