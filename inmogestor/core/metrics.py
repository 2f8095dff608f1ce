from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from threading import Lock
from time import perf_counter
from typing import Any, Callable

PUSHES_EJECUTADOS = "pushes_ejecutados"
PUSHES_OMITIDOS = "pushes_omitidos"
PULLS_EJECUTADOS = "pulls_ejecutados"
SNAPSHOTS_APLICADOS = "snapshots_aplicados"
ERRORES_SYNC = "errores_sync"
ESCRITURAS_FALLIDAS = "escrituras_locales_fallidas"

SUFIJO_ERRORES = ".errores"


@dataclass
class _TimingStats:
    """Agregado en memoria constante: la sesión de sync puede durar días."""

    count: int = 0
    last: float = 0.0
    total: float = 0.0
    max: float = 0.0

    def add(self, milisegundos: float) -> None:
        self.count += 1
        self.last = milisegundos
        self.total += milisegundos
        self.max = max(self.max, milisegundos)

    def as_dict(self) -> dict[str, float]:
        return {
            "count": self.count,
            "last": self.last,
            "avg": self.total / self.count if self.count else 0.0,
            "max": self.max,
        }


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, int] = {}
        self._timings: dict[str, _TimingStats] = {}

    def contador(self, nombre: str) -> int:
        with self._lock:
            return self._counters.get(nombre, 0)

    def incrementar(self, nombre: str, valor: int = 1) -> None:
        with self._lock:
            self._counters[nombre] = self._counters.get(nombre, 0) + valor

    def registrar_tiempo(self, nombre: str, milisegundos: float) -> None:
        with self._lock:
            self._timings.setdefault(nombre, _TimingStats()).add(milisegundos)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timings_ms": {name: stats.as_dict() for name, stats in self._timings.items()},
            }


metrics_registry = MetricsRegistry()


def medir_tiempo(nombre_metrica: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Registra la duración de cada llamada y cuenta las que terminan en excepción."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            inicio = perf_counter()
            try:
                return func(*args, **kwargs)
            except Exception:
                metrics_registry.incrementar(nombre_metrica + SUFIJO_ERRORES)
                raise
            finally:
                metrics_registry.registrar_tiempo(nombre_metrica, (perf_counter() - inicio) * 1000)

        return wrapper

    return decorator
