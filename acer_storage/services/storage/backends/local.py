"""Local filesystem storage backend."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from ..exceptions import BackendUnavailable, ConfigurationError, StorageError
from ..interfaces import BackendKind, DeleteOutcome, DeliveryTarget, PutResult
from ..naming import local_path_from_key, relative_key_from_local_path, validate_key
from .base import BaseStorageBackend

logger = logging.getLogger(__name__)


class LocalStorageBackend(BaseStorageBackend):
    """Local filesystem implementation for the storage contract.

    Objects live at ``{root}/{folder}/{tenant|default}/{name}`` and are served
    by the application at ``{url_prefix}/{key}``.

    There is no signing layer in front of the static path, so a "signed" URL
    for a private object is the same static path and its expiry is not
    enforced. ``SUPPORTS_SIGNED_URLS`` is False and ``describe()`` reports it.
    """

    KIND = BackendKind.LOCAL
    SUPPORTS_SIGNED_URLS = False

    def __init__(self, root: str, *, url_prefix: str = '/uploads', timeout: Optional[float] = None):
        self.root = str(Path(root)) if root else ''
        self.url_prefix = (url_prefix or '').rstrip('/')
        super().__init__(timeout=timeout)
        Path(self.root).mkdir(parents=True, exist_ok=True)

    def _validate_config(self) -> None:
        if not self.root:
            raise ConfigurationError('Local storage root is not configured', backend=self.name)
        if not self.url_prefix.startswith('/'):
            raise ConfigurationError('Local URL prefix must be a same-origin path starting with /',
                                     backend=self.name)

    def put(self, key: str, data: bytes, mime_type: str, *, public: bool = False) -> PutResult:
        key = validate_key(key)
        dst = local_path_from_key(self.root, key)
        try:
            # exist_ok makes concurrent first uploads for a new tenant safe
            Path(dst).parent.mkdir(parents=True, exist_ok=True)
            with open(dst, 'xb') as out_f:
                out_f.write(data)
        except FileExistsError as exc:
            raise StorageError('Object already exists', key=key, backend=self.name) from exc
        except OSError as exc:
            try:
                os.remove(dst)
            except OSError:
                pass
            raise BackendUnavailable(f"Local write failed: {exc.strerror or exc}", key=key, backend=self.name) from exc
        return PutResult(key=key, provider_id=key, size=len(data), content_type=mime_type)

    def delete(self, key: str) -> DeleteOutcome:
        key = validate_key(key)
        path = local_path_from_key(self.root, key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return DeleteOutcome.NOT_FOUND
        except OSError as exc:
            raise BackendUnavailable(f"Local delete failed: {exc.strerror or exc}", key=key, backend=self.name) from exc
        return DeleteOutcome.DELETED

    def resolve_path(self, key: str) -> str:
        return local_path_from_key(self.root, key)

    def exists(self, key: str) -> bool:
        return os.path.exists(self.resolve_path(key))

    def resolve_access_url(self, key: str, *, public: bool, expires_in: Optional[int] = None) -> str:
        key = validate_key(key)
        if not public and expires_in:
            logger.debug(f"Local backend cannot enforce expiry for {key}; returning static path")
        return f"{self.url_prefix}/{quote(key)}"

    def delivery_target(self, key: str, *, expires_in: Optional[int] = None) -> DeliveryTarget:
        return DeliveryTarget(mode='local_file', local_path=self.resolve_path(key))

    def list_keys(self, prefix: str) -> List[str]:
        base = Path(local_path_from_key(self.root, prefix))
        if not base.is_dir():
            return []
        keys = []
        for dirpath, _dirnames, filenames in os.walk(base):
            for filename in filenames:
                keys.append(relative_key_from_local_path(os.path.join(dirpath, filename), self.root))
        return sorted(keys)

    def details(self):
        return {'root': self.root, 'url_prefix': self.url_prefix}

    def quota(self):
        usage = shutil.disk_usage(self.root)
        return {'total_bytes': usage.total, 'used_bytes': usage.used, 'free_bytes': usage.free}
