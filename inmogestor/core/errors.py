from __future__ import annotations


class AppError(Exception):
    pass


class BusinessError(AppError):
    pass


class ValidationError(BusinessError):
    pass


class DelegatedWriteBlocked(BusinessError):
    """Edición/borrado rechazado para una sub-identidad.

    Se comprueba solo en el cliente: sirve de aviso de flujo de trabajo, no
    protege los datos del propietario frente a un cliente modificado.
    """


class InfraError(AppError):
    pass


class PersistenceError(InfraError):
    pass


class StorageQuotaError(PersistenceError):
    pass


class ExternalServiceError(InfraError):
    pass


class TransientExternalError(ExternalServiceError):
    pass


class ImportValidationError(ValidationError):
    pass
