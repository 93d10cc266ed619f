"""Pluggable object storage: local, S3, managed storage and Google Drive backends."""

from .access import AccessPolicy
from .backends import (
    BaseStorageBackend,
    DriveStorageBackend,
    LocalStorageBackend,
    ManagedStorageBackend,
    S3StorageBackend,
)
from .exceptions import (
    AccessDeniedError,
    BackendUnavailable,
    ConfigurationError,
    FileRejectedError,
    InvalidKeyError,
    InvalidTenantError,
    ObjectNotFoundError,
    PartialUploadFailure,
    RejectionReason,
    StorageError,
    ValidationError,
)
from .factory import StorageSettings, build_backend, load_storage_settings_from_env
from .interfaces import (
    BackendKind,
    DeleteOutcome,
    DeliveryTarget,
    ObjectKey,
    PrivateAccessMode,
    StorageCategory,
    UploadRequest,
    UploadResult,
    Visibility,
)
from .naming import derive_key
from .policies import DEFAULT_CATEGORY_POLICIES, CategoryPolicy, CategoryPolicyTable
from .service import StorageService
from .validation import FileValidator, ValidationResult

__all__ = [
    'AccessPolicy',
    'BaseStorageBackend',
    'DriveStorageBackend',
    'LocalStorageBackend',
    'ManagedStorageBackend',
    'S3StorageBackend',
    'AccessDeniedError',
    'BackendUnavailable',
    'ConfigurationError',
    'FileRejectedError',
    'InvalidKeyError',
    'InvalidTenantError',
    'ObjectNotFoundError',
    'PartialUploadFailure',
    'RejectionReason',
    'StorageError',
    'ValidationError',
    'StorageSettings',
    'build_backend',
    'load_storage_settings_from_env',
    'BackendKind',
    'DeleteOutcome',
    'DeliveryTarget',
    'ObjectKey',
    'PrivateAccessMode',
    'StorageCategory',
    'UploadRequest',
    'UploadResult',
    'Visibility',
    'derive_key',
    'DEFAULT_CATEGORY_POLICIES',
    'CategoryPolicy',
    'CategoryPolicyTable',
    'StorageService',
    'FileValidator',
    'ValidationResult',
]
