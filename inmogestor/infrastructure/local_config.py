from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any

from inmogestor.bootstrap.settings import resolve_appdata_dir
from inmogestor.domain.models import CloudConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"


class CloudConfigStore:
    """Lee y escribe `config.json` en el directorio de datos de la aplicación."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._config_path = self._base_dir / CONFIG_FILENAME

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> CloudConfig | None:
        payload = self._read_payload()
        if payload is None:
            return None
        device_id = str(payload.get("device_id", "")).strip()
        if not device_id:
            device_id = str(uuid.uuid4())
            payload["device_id"] = device_id
            self._write_payload(payload)
        config = CloudConfig(
            project_id=str(payload.get("firestore_project_id", "")).strip(),
            credentials_path=str(payload.get("path_credentials_json", "")).strip(),
            user_id=str(payload.get("user_id", "")).strip(),
            user_name=str(payload.get("user_name", "")).strip(),
            user_email=str(payload.get("user_email", "")).strip(),
            device_id=device_id,
        )
        if not config.project_id and not config.credentials_path:
            return None
        return config

    def save(self, config: CloudConfig) -> CloudConfig:
        payload = {
            "firestore_project_id": config.project_id,
            "path_credentials_json": config.credentials_path,
            "user_id": config.user_id,
            "user_name": config.user_name,
            "user_email": config.user_email,
            "device_id": config.device_id or str(uuid.uuid4()),
        }
        self._write_payload(payload)
        return CloudConfig(
            project_id=payload["firestore_project_id"],
            credentials_path=payload["path_credentials_json"],
            user_id=payload["user_id"],
            user_name=payload["user_name"],
            user_email=payload["user_email"],
            device_id=payload["device_id"],
        )

    def _read_payload(self) -> dict[str, Any] | None:
        if not self._config_path.exists():
            return None
        try:
            payload = json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("No se pudo leer %s: %s", CONFIG_FILENAME, exc)
            return None
        return payload if isinstance(payload, dict) else None

    def _write_payload(self, payload: dict[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
