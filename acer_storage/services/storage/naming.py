"""Object key generation, sanitizing and parsing helpers."""

from __future__ import annotations

import os
import random
import uuid
from pathlib import Path
from typing import NamedTuple, Optional

from werkzeug.utils import secure_filename

from .exceptions import InvalidKeyError, InvalidTenantError
from .interfaces import DEFAULT_TENANT_SEGMENT, ObjectKey

MAX_EXTENSION_LENGTH = 16


class StorageKeyParts(NamedTuple):
    folder: str
    tenant_segment: str
    name: str

    @property
    def tenant_id(self) -> Optional[str]:
        return None if self.tenant_segment == DEFAULT_TENANT_SEGMENT else self.tenant_segment


def sanitize_extension(original_name: Optional[str]) -> str:
    """Lower-cased extension of ``original_name`` with path components and unsafe characters removed."""
    name = (original_name or '').replace('\x00', '')
    name = name.replace('\\', '/').rsplit('/', 1)[-1]
    # split before secure_filename, which drops non-ASCII stems together with the dot
    _, ext = os.path.splitext(name)
    ext = secure_filename(ext.lstrip('.'))
    ext = ''.join(c for c in ext if c.isascii() and c.isalnum()).lower()
    return ext[:MAX_EXTENSION_LENGTH]


def validate_tenant_id(tenant_id: Optional[str]) -> Optional[str]:
    """Tenant ids are opaque, but must be usable as exactly one path segment."""
    if tenant_id is None:
        return None
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise InvalidTenantError('Tenant identifier must be a non-empty string')
    if any(c in tenant_id for c in ('/', '\\', '\x00')) or tenant_id in ('.', '..'):
        raise InvalidTenantError('Tenant identifier cannot contain path separators')
    return tenant_id


def generate_base_name(rng: Optional[random.Random] = None) -> str:
    """122 random bits in UUID4 form. ``rng`` is only for reproducible tests."""
    if rng is None:
        return uuid.uuid4().hex
    return uuid.UUID(int=rng.getrandbits(128), version=4).hex


def derive_key(original_name: Optional[str], tenant_id: Optional[str] = None, *,
               rng: Optional[random.Random] = None) -> ObjectKey:
    """Build a fresh, collision-resistant key for an upload."""
    tenant_id = validate_tenant_id(tenant_id)
    return ObjectKey(base=generate_base_name(rng), extension=sanitize_extension(original_name), tenant_id=tenant_id)


def _normalize_key(key: str) -> str:
    key = (key or '').replace('\\', '/').strip()
    while '//' in key:
        key = key.replace('//', '/')
    return key


def validate_key(key: Optional[str]) -> str:
    """Normalize a backend-relative key and refuse anything that could escape its container."""
    if not isinstance(key, str):
        raise InvalidKeyError('Storage key must be a string')
    normalized = _normalize_key(key)
    if not normalized or '\x00' in normalized:
        raise InvalidKeyError('Storage key is empty or malformed', key=key)
    if normalized.startswith('/') or (len(normalized) > 1 and normalized[1] == ':'):
        raise InvalidKeyError('Storage key must be relative', key=key)
    segments = normalized.split('/')
    if any(seg in ('', '.', '..') for seg in segments):
        raise InvalidKeyError('Storage key contains traversal segments', key=key)
    return normalized


def parse_storage_key(key: str) -> StorageKeyParts:
    """Split ``{folder}/{tenant|default}/{name}``."""
    normalized = validate_key(key)
    segments = normalized.split('/')
    if len(segments) != 3:
        raise InvalidKeyError('Storage key must look like folder/tenant/name', key=key)
    return StorageKeyParts(*segments)


def local_path_from_key(local_root: str, key: str) -> str:
    """Resolve a storage key under local_root and prevent path traversal."""
    safe_key = validate_key(key)
    root = Path(local_root).resolve()
    candidate = (root / Path(*safe_key.split('/'))).resolve()
    try:
        candidate.relative_to(root)
    except ValueError as exc:
        raise InvalidKeyError('Local storage key resolves outside root', key=key) from exc
    return str(candidate)


def relative_key_from_local_path(abs_path: str, local_root: str) -> str:
    """Convert absolute local path to a storage key relative to local root."""
    root = Path(local_root).resolve()
    path = Path(abs_path).resolve()
    try:
        rel = path.relative_to(root)
    except ValueError as exc:
        raise InvalidKeyError(f"Path '{abs_path}' is outside local storage root") from exc
    return validate_key(rel.as_posix())
