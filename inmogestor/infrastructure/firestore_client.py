from __future__ import annotations

import json
import logging
from pathlib import Path

from google.auth.exceptions import DefaultCredentialsError
from google.cloud import firestore
from google.oauth2 import service_account

from inmogestor.bootstrap.logging import log_operational_error
from inmogestor.domain.models import CloudConfig
from inmogestor.infrastructure.firestore_errors import map_firestore_exception

logger = logging.getLogger(__name__)


def build_firestore_client(config: CloudConfig) -> firestore.Client:
    """Crea el cliente con la cuenta de servicio indicada en `config.json`."""
    logger.info("Conectando a Firestore del proyecto %s", config.project_id)
    try:
        credentials = service_account.Credentials.from_service_account_file(str(Path(config.credentials_path)))
        return firestore.Client(project=config.project_id or None, credentials=credentials)
    except (FileNotFoundError, json.JSONDecodeError, ValueError, DefaultCredentialsError, OSError) as exc:
        mapped = map_firestore_exception(exc)
        log_operational_error(
            logger,
            "No se pudo crear el cliente de Firestore",
            exc=exc,
            extra={"project_id": config.project_id},
        )
        raise mapped from exc
