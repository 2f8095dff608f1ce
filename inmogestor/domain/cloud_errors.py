from __future__ import annotations

from inmogestor.core.errors import ExternalServiceError, InfraError, TransientExternalError


class CloudConfigError(InfraError):
    pass


class CloudCredentialsError(CloudConfigError):
    pass


class CloudPermissionError(CloudConfigError):
    pass


class CloudNotFoundError(CloudConfigError):
    pass


class CloudServiceError(ExternalServiceError):
    pass


class CloudUnavailableError(TransientExternalError):
    pass
