from __future__ import annotations

import logging

from inmogestor.domain.sync_models import SyncStatus

logger = logging.getLogger(__name__)

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LoggingNotifier:
    """Canal de avisos para ejecuciones sin interfaz: todo va al log de seguimiento."""

    def __init__(self) -> None:
        self.sync_status: SyncStatus = SyncStatus.OFFLINE

    def notify(self, message: str, severity: str = "info") -> None:
        logger.log(_LEVELS.get(severity, logging.INFO), message, extra={"extra": {"severity": severity}})

    def update_sync_status(self, status: SyncStatus) -> None:
        if status is not self.sync_status:
            logger.info("Estado de sincronización: %s", status.value)
        self.sync_status = status
