"""Storage service facade over the single configured backend."""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Optional, Union

from .access import AccessPolicy
from .backends.base import BaseStorageBackend
from .exceptions import AccessDeniedError, BackendUnavailable, InvalidKeyError, StorageError
from .factory import StorageSettings, build_backend, load_storage_settings_from_env
from .interfaces import (
    DEFAULT_TENANT_SEGMENT,
    DeleteOutcome,
    DeliveryTarget,
    PrivateAccessMode,
    StorageCategory,
    UploadRequest,
    UploadResult,
)
from .naming import derive_key, parse_storage_key, validate_tenant_id
from .policies import CategoryPolicy, CategoryPolicyTable
from .validation import FileValidator

logger = logging.getLogger(__name__)


class StorageService:
    """
    Facade to hide storage backend details from business logic.

    The backend is built in the constructor, so missing credentials raise
    ConfigurationError before any request is served. One instance is shared by
    all request threads.
    """

    def __init__(self, settings: Optional[StorageSettings] = None, *,
                 backend: Optional[BaseStorageBackend] = None,
                 policies: Optional[CategoryPolicyTable] = None,
                 rng: Optional[random.Random] = None):
        self.settings = settings or load_storage_settings_from_env()
        self.policies = policies or CategoryPolicyTable()
        self.validator = FileValidator(self.policies)
        self.backend = backend if backend is not None else build_backend(self.settings, self.policies)
        self.access = AccessPolicy(
            self.policies,
            private_mode=self.settings.private_access,
            proxy_prefix=self.settings.proxy_prefix,
            default_expiry=self.settings.signed_url_ttl_seconds,
        )
        self._rng = rng
        logger.info(f"Storage backend '{self.backend.name}' active (private access: {self.access.private_mode.value})")
        if self.access.private_mode == PrivateAccessMode.SIGNED and not self.backend.SUPPORTS_SIGNED_URLS:
            logger.warning(f"Backend '{self.backend.name}' cannot enforce signed URL expiry")

    @property
    def backend_name(self) -> str:
        return self.backend.name

    def _policy_for_key(self, key: str) -> CategoryPolicy:
        parts = parse_storage_key(key)
        if not self.policies.has_folder(parts.folder):
            raise InvalidKeyError("Key does not belong to a storage category", key=key, backend=self.backend.name)
        return self.policies.for_folder(parts.folder)

    def _annotate(self, exc: StorageError, policy: Optional[CategoryPolicy], key: Optional[str]) -> None:
        if policy is not None and not exc.category:
            exc.category = policy.category.value
        if key and not exc.key:
            exc.key = key
        if not exc.backend:
            exc.backend = self.backend.name

    def _unexpected(self, exc: Exception, action: str, policy: Optional[CategoryPolicy],
                    key: Optional[str]) -> BackendUnavailable:
        logger.exception(f"Unexpected error during storage {action} on '{self.backend.name}'")
        return BackendUnavailable(
            f"Storage {action} failed: {type(exc).__name__}",
            category=policy.category.value if policy else None,
            key=key,
            backend=self.backend.name,
        )

    def _discard(self, key: str) -> None:
        """Remove an object whose upload could not be completed. Failures are logged; the original error wins."""
        try:
            self.backend.delete(key)
            logger.warning(f"Removed {key} from {self.backend.name} after its upload failed")
        except Exception as exc:
            logger.error(f"Could not remove {key} from {self.backend.name} after its upload failed: {exc}")

    def validate(self, category: Union[StorageCategory, str], mime_type: Optional[str], byte_size: int):
        return self.validator.validate(category, mime_type, byte_size)

    def upload(self, request: UploadRequest, *, expires_in: Optional[int] = None) -> UploadResult:
        """
        Validate, name, store and address one upload.

        Raises:
            FileRejectedError: Type or size refused by the category policy (no backend call made)
            InvalidTenantError: Tenant identifier is not a usable path segment
            BackendUnavailable: Provider failure, safe to retry
            PartialUploadFailure: Stored but not made public (cloud drive only)
        """
        policy = self.policies.get(request.category)
        self.validator.ensure_valid(policy.category, request.mime_type, request.size)
        object_key = derive_key(request.original_name, request.tenant_id, rng=self._rng)
        key = object_key.storage_key(policy.folder)

        try:
            stored = self.backend.put(key, request.data, request.mime_type, public=policy.is_public)
        except StorageError as exc:
            self._annotate(exc, policy, key)
            logger.error(f"Upload failed: {exc}")
            raise
        except Exception as exc:
            raise self._unexpected(exc, 'upload', policy, key) from exc

        # Object is stored from here on; undo the write if no URL can be produced
        try:
            url = self.access.url_for(policy.category, stored.key, self.backend, expires_in=expires_in)
        except StorageError as exc:
            self._annotate(exc, policy, stored.key)
            logger.error(f"Upload failed after write: {exc}")
            self._discard(stored.key)
            raise
        except Exception as exc:
            self._discard(stored.key)
            raise self._unexpected(exc, 'url resolution', policy, stored.key) from exc

        logger.info(f"Stored {policy.category.value} object {stored.key} ({request.size} bytes) on {self.backend.name}")
        return UploadResult(url=url, key=stored.key, file_name=object_key.file_name)

    def delete(self, key: str) -> DeleteOutcome:
        """Delete by key. A missing object is reported as NOT_FOUND, not raised."""
        policy = self._policy_for_key(key)
        try:
            outcome = self.backend.delete(key)
        except StorageError as exc:
            self._annotate(exc, policy, key)
            raise
        except Exception as exc:
            raise self._unexpected(exc, 'delete', policy, key) from exc

        if outcome == DeleteOutcome.NOT_FOUND:
            logger.info(f"Delete of {key} on {self.backend.name}: object already absent")
        else:
            logger.info(f"Deleted {key} from {self.backend.name}")
        return outcome

    def get_access_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """Stable URL for public categories; proxy or signed URL for private ones."""
        policy = self._policy_for_key(key)
        try:
            return self.access.url_for(policy.category, key, self.backend, expires_in=expires_in)
        except StorageError as exc:
            self._annotate(exc, policy, key)
            raise
        except Exception as exc:
            raise self._unexpected(exc, 'url resolution', policy, key) from exc

    def list_objects(self, category: Union[StorageCategory, str], tenant_id: Optional[str] = None) -> List[str]:
        policy = self.policies.get(category)
        tenant_segment = validate_tenant_id(tenant_id) or DEFAULT_TENANT_SEGMENT
        prefix = f"{policy.folder}/{tenant_segment}"
        try:
            return self.backend.list_keys(prefix)
        except StorageError as exc:
            self._annotate(exc, policy, prefix)
            raise
        except Exception as exc:
            raise self._unexpected(exc, 'list', policy, prefix) from exc

    def resolve_proxy_target(self, key: str, tenant_id: Optional[str],
                             expires_in: Optional[int] = None) -> DeliveryTarget:
        """
        Work out what the proxy route should serve for ``key``.

        The caller has already authenticated the requester; this checks that a
        private key lives under the requester's tenant.

        ``tenant_id=None`` means an untenanted requester. Such a requester may
        read every private key under the ``default`` segment and nothing else,
        so only pass None for users that genuinely belong to no tenant.

        Raises:
            AccessDeniedError: Private key outside the requester's tenant
        """
        policy = self._policy_for_key(key)
        try:
            if policy.is_public:
                return DeliveryTarget(mode='redirect_url', url=self.backend.resolve_access_url(key, public=True))

            parts = parse_storage_key(key)
            if parts.tenant_id != validate_tenant_id(tenant_id):
                logger.warning(f"Proxy access to {key} refused for tenant {tenant_id!r}")
                raise AccessDeniedError('Object belongs to another tenant', category=policy.category.value, key=key,
                                        backend=self.backend.name)
            return self.backend.delivery_target(key, expires_in=expires_in or self.settings.signed_url_ttl_seconds)
        except StorageError as exc:
            self._annotate(exc, policy, key)
            raise
        except Exception as exc:
            raise self._unexpected(exc, 'proxy resolution', policy, key) from exc

    def retry_public_grant(self, key: str) -> str:
        """Re-run only the public permission step after a PartialUploadFailure; returns the public URL."""
        policy = self._policy_for_key(key)
        if not policy.is_public:
            raise InvalidKeyError('Refusing to publish an object from a private category',
                                  category=policy.category.value, key=key, backend=self.backend.name)
        try:
            self.backend.grant_public_access(key)
            url = self.access.url_for(policy.category, key, self.backend)
        except StorageError as exc:
            self._annotate(exc, policy, key)
            raise
        except Exception as exc:
            raise self._unexpected(exc, 'permission grant', policy, key) from exc
        logger.info(f"Public access granted for {key} on {self.backend.name}")
        return url

    def describe_backend(self) -> Dict[str, Any]:
        """Operational snapshot: backend kind, access mode, provider details and quota where available."""
        try:
            description = self.backend.describe().to_dict()
        except OSError as exc:
            logger.warning(f"Could not read storage usage for {self.backend.name}: {exc}")
            description = {
                'kind': self.backend.name,
                'signed_urls_enforced': self.backend.SUPPORTS_SIGNED_URLS,
                'details': self.backend.details(),
                'quota': None,
            }
        description['backend'] = description.pop('kind')
        description['private_access'] = self.access.private_mode.value
        description['proxy_prefix'] = self.access.proxy_prefix
        description['signed_url_ttl_seconds'] = self.settings.signed_url_ttl_seconds
        description['credentials'] = self.settings.credential_presence()
        return description

    def close(self) -> None:
        self.backend.close()
