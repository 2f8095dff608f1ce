from __future__ import annotations

import json
from typing import Optional

from google.api_core import exceptions as gcp_exceptions
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError

from inmogestor.domain.cloud_errors import (
    CloudConfigError,
    CloudCredentialsError,
    CloudNotFoundError,
    CloudPermissionError,
    CloudServiceError,
    CloudUnavailableError,
)

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    gcp_exceptions.ServiceUnavailable,
    gcp_exceptions.DeadlineExceeded,
    gcp_exceptions.ResourceExhausted,
    gcp_exceptions.TooManyRequests,
    gcp_exceptions.InternalServerError,
    gcp_exceptions.RetryError,
)

_DOMAIN_ERRORS: tuple[type[Exception], ...] = (
    CloudConfigError,
    CloudServiceError,
    CloudUnavailableError,
)


def _credentials_not_found_message(path: Optional[str]) -> str:
    if path:
        return f"No se encuentra el fichero de credenciales en {path}."
    return "No se encuentra el fichero de credenciales."


def map_firestore_exception(ex: Exception) -> Exception:
    """Traduce errores de google-api-core / google-auth a la taxonomía de la nube."""
    if isinstance(ex, _DOMAIN_ERRORS):
        return ex
    if isinstance(ex, gcp_exceptions.PermissionDenied | gcp_exceptions.Unauthenticated):
        return CloudPermissionError("La cuenta no tiene permiso sobre el documento de Firestore.")
    if isinstance(ex, gcp_exceptions.NotFound):
        return CloudNotFoundError("El proyecto o el documento de Firestore no existe.")
    if isinstance(ex, _TRANSIENT_ERRORS):
        return CloudUnavailableError("Firestore no está disponible. Se reintentará en el próximo cambio.")
    if isinstance(ex, gcp_exceptions.GoogleAPICallError):
        return CloudServiceError(f"Error de Firestore: {ex.message or ex}")
    if isinstance(ex, FileNotFoundError):
        return CloudCredentialsError(_credentials_not_found_message(getattr(ex, "filename", None)))
    if isinstance(ex, json.JSONDecodeError | ValueError | DefaultCredentialsError | GoogleAuthError):
        return CloudCredentialsError("El fichero de credenciales no es válido. Revisa su contenido.")
    if isinstance(ex, OSError):
        return CloudUnavailableError(f"Sin conexión con Firestore: {ex}")
    return CloudServiceError(str(ex))
