"""
Custom exceptions for the storage services.
"""

from enum import Enum
from typing import Iterable, Optional, Tuple


class RejectionReason(str, Enum):
    """Why an upload was refused before reaching a backend."""
    UNSUPPORTED_TYPE = 'unsupported_type'
    TOO_LARGE = 'too_large'


class StorageError(Exception):
    """Base exception for storage errors.

    Context fields are used for diagnosis; credentials never go in here.
    """

    retryable = False

    def __init__(self, message: str, *, category: Optional[str] = None, key: Optional[str] = None,
                 backend: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.category = category
        self.key = key
        self.backend = backend

    def context(self) -> dict:
        return {
            name: value
            for name, value in (('category', self.category), ('key', self.key), ('backend', self.backend))
            if value
        }

    def __str__(self) -> str:
        ctx = self.context()
        if not ctx:
            return self.message
        details = ', '.join(f"{name}={value}" for name, value in ctx.items())
        return f"{self.message} ({details})"


class ConfigurationError(StorageError):
    """Configuration-related errors (missing credentials, unknown category, policy drift)."""
    pass


class ValidationError(StorageError):
    """Caller input that can never succeed as given."""
    pass


class FileRejectedError(ValidationError):
    """Upload refused by the category policy."""

    def __init__(self, message: str, reasons: Iterable[RejectionReason], **context):
        super().__init__(message, **context)
        self.reasons: Tuple[RejectionReason, ...] = tuple(reasons)

    @property
    def unsupported_type(self) -> bool:
        return RejectionReason.UNSUPPORTED_TYPE in self.reasons

    @property
    def too_large(self) -> bool:
        return RejectionReason.TOO_LARGE in self.reasons


class InvalidTenantError(ValidationError):
    """Tenant identifier cannot be used as a path segment."""
    pass


class InvalidKeyError(ValidationError):
    """Key is malformed or does not belong to a known category."""
    pass


class BackendUnavailable(StorageError):
    """Provider, network or authentication failure. Safe for the caller to retry."""

    retryable = True

    def __init__(self, message: str, *, status_code: Optional[int] = None, **context):
        super().__init__(message, **context)
        self.status_code = status_code


class PartialUploadFailure(StorageError):
    """Object was written but could not be made publicly readable."""

    def __init__(self, message: str, *, file_name: Optional[str] = None, provider_id: Optional[str] = None,
                 **context):
        super().__init__(message, **context)
        self.file_name = file_name
        self.provider_id = provider_id


class ObjectNotFoundError(StorageError):
    """Backend reports the object does not exist."""
    pass


class AccessDeniedError(StorageError):
    """Requester may not reach the object."""
    pass
