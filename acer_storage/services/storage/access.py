"""Decides which kind of URL a stored object is handed out with."""

from __future__ import annotations

import logging
from typing import Optional, Union
from urllib.parse import quote

from .backends.base import BaseStorageBackend
from .interfaces import PrivateAccessMode, StorageCategory
from .naming import validate_key
from .policies import CategoryPolicyTable

logger = logging.getLogger(__name__)


class AccessPolicy:
    """
    Maps (category, key) to a URL.

    Public categories get the backend's permanent URL. Private categories get
    either the same-origin proxy route ``{proxy_prefix}/{key}`` (authorization
    happens in that route) or a backend-signed URL, depending on the
    deployment-wide ``private_mode``.
    """

    def __init__(self, policies: CategoryPolicyTable, *,
                 private_mode: Union[PrivateAccessMode, str] = PrivateAccessMode.PROXY,
                 proxy_prefix: str = '/storage', default_expiry: int = 3600):
        self.policies = policies
        self.private_mode = PrivateAccessMode(private_mode)
        self.proxy_prefix = (proxy_prefix or '/storage').rstrip('/')
        self.default_expiry = int(default_expiry)

    def proxy_url(self, key: str) -> str:
        return f"{self.proxy_prefix}/{quote(validate_key(key))}"

    def url_for(self, category: Union[StorageCategory, str], key: str, backend: BaseStorageBackend,
                expires_in: Optional[int] = None) -> str:
        policy = self.policies.get(category)
        if policy.is_public:
            return backend.resolve_access_url(key, public=True)
        if self.private_mode == PrivateAccessMode.PROXY:
            return self.proxy_url(key)
        return backend.resolve_access_url(key, public=False, expires_in=expires_in or self.default_expiry)
