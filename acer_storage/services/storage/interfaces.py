"""Storage interfaces and shared dataclasses for file storage backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

# Path segment used in keys when an upload carries no tenant.
DEFAULT_TENANT_SEGMENT = 'default'


class StorageCategory(str, Enum):
    """Closed set of uploaded content classes."""
    AVATAR = 'avatar'
    RECORDING = 'recording'
    SEQUENCE = 'sequence'
    MULTIMEDIA = 'multimedia'


class Visibility(str, Enum):
    PUBLIC = 'public'
    PRIVATE = 'private'


class BackendKind(str, Enum):
    LOCAL = 'local'
    S3 = 's3'
    MANAGED = 'managed'
    GDRIVE = 'gdrive'


class PrivateAccessMode(str, Enum):
    """How private objects are handed out (fixed per deployment)."""
    PROXY = 'proxy'
    SIGNED = 'signed'


class DeleteOutcome(str, Enum):
    DELETED = 'deleted'
    NOT_FOUND = 'not_found'


@dataclass
class UploadRequest:
    """Candidate upload as received from calling code."""

    category: Union[StorageCategory, str]
    original_name: str
    data: bytes = field(repr=False)
    mime_type: str
    tenant_id: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ObjectKey:
    """Generated address of an object, before the category folder is applied."""

    base: str
    extension: str = ''
    tenant_id: Optional[str] = None

    @property
    def file_name(self) -> str:
        return f"{self.base}.{self.extension}" if self.extension else self.base

    @property
    def path(self) -> str:
        if self.tenant_id:
            return f"{self.tenant_id}/{self.file_name}"
        return self.file_name

    def storage_key(self, folder: str) -> str:
        """Backend-relative key: ``{folder}/{tenant|default}/{file_name}``."""
        return f"{folder}/{self.tenant_id or DEFAULT_TENANT_SEGMENT}/{self.file_name}"


@dataclass(frozen=True)
class UploadResult:
    """Returned to callers. Only ``key`` should be persisted."""

    url: str
    key: str
    file_name: str


@dataclass
class PutResult:
    """Result of a physical write by a backend."""

    key: str
    provider_id: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = None


@dataclass
class BackendDescription:
    """Operational snapshot of the active backend."""

    kind: str
    signed_urls_enforced: bool
    details: Dict[str, Any] = field(default_factory=dict)
    quota: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'signed_urls_enforced': self.signed_urls_enforced,
            'details': dict(self.details),
            'quota': self.quota,
        }


@dataclass
class DeliveryTarget:
    """How the proxy route should hand an object to an authorized requester."""

    mode: str  # redirect_url | local_file
    url: Optional[str] = None
    local_path: Optional[str] = None
