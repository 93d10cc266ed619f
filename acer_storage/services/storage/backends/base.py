"""
Base class for storage backends.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..interfaces import BackendDescription, BackendKind, DeleteOutcome, DeliveryTarget, PutResult


class BaseStorageBackend(ABC):
    """Abstract base class for storage backends.

    A backend is constructed once per process and shared between requests, so
    implementations must be safe to call from several threads at once.
    """

    KIND: BackendKind
    # False when "signed" URLs cannot actually expire (see LocalStorageBackend).
    SUPPORTS_SIGNED_URLS: bool = True

    DEFAULT_TIMEOUT_SECONDS = 30.0

    def __init__(self, *, timeout: Optional[float] = None):
        self.timeout = float(timeout) if timeout else self.DEFAULT_TIMEOUT_SECONDS
        self._validate_config()

    @property
    def name(self) -> str:
        return self.KIND.value

    @abstractmethod
    def _validate_config(self) -> None:
        """
        Validate required configuration is present.

        Raises:
            ConfigurationError: If required config is missing or invalid
        """
        pass

    @abstractmethod
    def put(self, key: str, data: bytes, mime_type: str, *, public: bool = False) -> PutResult:
        """
        Write an object, creating its container if needed.

        Args:
            key: Backend-relative key ``folder/tenant/name``
            data: Object payload
            mime_type: Declared content type
            public: Category visibility, for backends that apply it at write time

        Returns:
            PutResult whose ``key`` must be used for later delete/URL calls
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> DeleteOutcome:
        """Delete an object. A missing object is reported, not raised."""
        pass

    @abstractmethod
    def resolve_access_url(self, key: str, *, public: bool, expires_in: Optional[int] = None) -> str:
        """
        Stable URL for public objects, time-bounded URL for private ones.

        Private URLs may differ between calls.
        """
        pass

    @abstractmethod
    def list_keys(self, prefix: str) -> List[str]:
        """Keys stored under ``prefix`` (``folder/tenant``)."""
        pass

    def delivery_target(self, key: str, *, expires_in: Optional[int] = None) -> DeliveryTarget:
        """Where the proxy route sends an already authorized request for a private object."""
        return DeliveryTarget(mode='redirect_url', url=self.resolve_access_url(key, public=False, expires_in=expires_in))

    def grant_public_access(self, key: str) -> None:
        """Make an already written object publicly readable. No-op unless the backend needs a separate step."""
        return None

    def details(self) -> Dict[str, Any]:
        return {}

    def quota(self) -> Optional[Dict[str, Any]]:
        return None

    def describe(self) -> BackendDescription:
        return BackendDescription(
            kind=self.name,
            signed_urls_enforced=self.SUPPORTS_SIGNED_URLS,
            details=self.details(),
            quota=self.quota(),
        )

    def close(self) -> None:
        """Release long-lived client handles."""
        return None
