"""Factory for configuring file storage backends from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .backends import (
    BaseStorageBackend,
    DriveStorageBackend,
    LocalStorageBackend,
    ManagedStorageBackend,
    S3StorageBackend,
)
from .exceptions import ConfigurationError
from .interfaces import BackendKind, PrivateAccessMode
from .policies import CategoryPolicyTable

logger = logging.getLogger(__name__)

BACKEND_ALIASES = {
    'local': BackendKind.LOCAL,
    's3': BackendKind.S3,
    'object-store': BackendKind.S3,
    'object_store': BackendKind.S3,
    'managed': BackendKind.MANAGED,
    'managed-storage': BackendKind.MANAGED,
    'supabase': BackendKind.MANAGED,
    'gdrive': BackendKind.GDRIVE,
    'cloud-drive': BackendKind.GDRIVE,
    'google-drive': BackendKind.GDRIVE,
}


@dataclass
class StorageSettings:
    backend: BackendKind = BackendKind.LOCAL
    local_root: str = 'public/uploads'
    local_url_prefix: str = '/uploads'
    proxy_prefix: str = '/storage'
    private_access: PrivateAccessMode = PrivateAccessMode.PROXY
    signed_url_ttl_seconds: int = 3600
    timeout_seconds: float = 30.0
    verify_containers: bool = False

    s3_bucket_name: Optional[str] = None
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_access_key_id: Optional[str] = field(default=None, repr=False)
    s3_secret_access_key: Optional[str] = field(default=None, repr=False)
    s3_session_token: Optional[str] = field(default=None, repr=False)
    s3_use_path_style: bool = False
    s3_verify_ssl: bool = True
    cdn_base_url: Optional[str] = None

    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = field(default=None, repr=False)

    gdrive_client_id: Optional[str] = None
    gdrive_client_secret: Optional[str] = field(default=None, repr=False)
    gdrive_refresh_token: Optional[str] = field(default=None, repr=False)
    gdrive_root_folder_id: Optional[str] = None

    def credential_presence(self) -> dict:
        """Which credential sets are configured, without exposing them."""
        return {
            'aws': bool(self.s3_access_key_id and self.s3_secret_access_key),
            'supabase_url': bool(self.supabase_url),
            'supabase_key': bool(self.supabase_service_key),
            'google_drive': bool(self.gdrive_client_id and self.gdrive_client_secret and self.gdrive_refresh_token),
        }


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def _url(value: Optional[str]) -> Optional[str]:
    # .env files sometimes carry trailing "# comment" after URLs
    return _clean(value.split('#')[0]) if value else None


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def parse_backend_kind(value: Optional[str]) -> BackendKind:
    name = (value or 'local').strip().lower() or 'local'
    try:
        return BACKEND_ALIASES[name]
    except KeyError as exc:
        raise ConfigurationError(
            f"Unknown STORAGE_BACKEND '{name}'. Available: {', '.join(sorted(BACKEND_ALIASES))}"
        ) from exc


def load_storage_settings_from_env(environ: Optional[Mapping[str, str]] = None) -> StorageSettings:
    env = os.environ if environ is None else environ

    mode = (env.get('STORAGE_PRIVATE_ACCESS') or 'proxy').strip().lower()
    try:
        private_access = PrivateAccessMode(mode)
    except ValueError as exc:
        raise ConfigurationError(f"STORAGE_PRIVATE_ACCESS must be 'proxy' or 'signed', got '{mode}'") from exc

    try:
        ttl = int(env.get('STORAGE_SIGNED_URL_TTL_SECONDS') or 3600)
        timeout = float(env.get('STORAGE_TIMEOUT_SECONDS') or 30)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid numeric storage setting: {exc}") from exc
    if ttl <= 0 or timeout <= 0:
        raise ConfigurationError('STORAGE_SIGNED_URL_TTL_SECONDS and STORAGE_TIMEOUT_SECONDS must be positive')

    return StorageSettings(
        backend=parse_backend_kind(env.get('STORAGE_BACKEND')),
        local_root=_clean(env.get('STORAGE_LOCAL_ROOT')) or 'public/uploads',
        local_url_prefix=_clean(env.get('STORAGE_LOCAL_URL_PREFIX')) or '/uploads',
        proxy_prefix=_clean(env.get('STORAGE_PROXY_PREFIX')) or '/storage',
        private_access=private_access,
        signed_url_ttl_seconds=ttl,
        timeout_seconds=timeout,
        verify_containers=_flag(env.get('STORAGE_VERIFY_CONTAINERS'), False),
        s3_bucket_name=_clean(env.get('AWS_S3_BUCKET')) or 'acer-music-files',
        s3_region=_clean(env.get('AWS_REGION')) or 'eu-west-3',
        s3_endpoint_url=_url(env.get('AWS_S3_ENDPOINT_URL')),
        s3_access_key_id=_clean(env.get('AWS_ACCESS_KEY_ID')),
        s3_secret_access_key=_clean(env.get('AWS_SECRET_ACCESS_KEY')),
        s3_session_token=_clean(env.get('AWS_SESSION_TOKEN')),
        s3_use_path_style=_flag(env.get('AWS_S3_USE_PATH_STYLE'), False),
        s3_verify_ssl=_flag(env.get('AWS_S3_VERIFY_SSL'), True),
        cdn_base_url=_url(env.get('AWS_CLOUDFRONT_URL')),
        supabase_url=_url(env.get('SUPABASE_URL')) or _url(env.get('NEXT_PUBLIC_SUPABASE_URL')),
        supabase_service_key=_clean(env.get('SUPABASE_SERVICE_ROLE_KEY')),
        gdrive_client_id=_clean(env.get('GOOGLE_DRIVE_CLIENT_ID')),
        gdrive_client_secret=_clean(env.get('GOOGLE_DRIVE_CLIENT_SECRET')),
        gdrive_refresh_token=_clean(env.get('GOOGLE_DRIVE_REFRESH_TOKEN')),
        gdrive_root_folder_id=_clean(env.get('GOOGLE_DRIVE_ROOT_FOLDER_ID')),
    )


def build_local_backend(settings: StorageSettings) -> LocalStorageBackend:
    return LocalStorageBackend(settings.local_root, url_prefix=settings.local_url_prefix,
                               timeout=settings.timeout_seconds)


def build_s3_backend(settings: StorageSettings) -> S3StorageBackend:
    return S3StorageBackend(
        bucket=settings.s3_bucket_name,
        region=settings.s3_region,
        endpoint_url=settings.s3_endpoint_url,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        session_token=settings.s3_session_token,
        use_path_style=settings.s3_use_path_style,
        verify_ssl=settings.s3_verify_ssl,
        cdn_base_url=settings.cdn_base_url,
        signed_url_ttl=settings.signed_url_ttl_seconds,
        timeout=settings.timeout_seconds,
    )


def build_managed_backend(settings: StorageSettings, policies: CategoryPolicyTable) -> ManagedStorageBackend:
    ManagedStorageBackend.verify_visibility(policies)
    backend = ManagedStorageBackend(
        url=settings.supabase_url,
        service_key=settings.supabase_service_key,
        signed_url_ttl=settings.signed_url_ttl_seconds,
        timeout=settings.timeout_seconds,
    )
    if settings.verify_containers:
        problems = backend.verify_provisioned_visibility()
        if problems:
            backend.close()
            raise ConfigurationError(f"Provisioned buckets disagree with policy: {'; '.join(problems)}",
                                     backend=backend.name)
    return backend


def build_drive_backend(settings: StorageSettings) -> DriveStorageBackend:
    return DriveStorageBackend(
        client_id=settings.gdrive_client_id,
        client_secret=settings.gdrive_client_secret,
        refresh_token=settings.gdrive_refresh_token,
        root_folder_id=settings.gdrive_root_folder_id,
        proxy_prefix=settings.proxy_prefix,
        timeout=settings.timeout_seconds,
    )


def build_backend(settings: StorageSettings, policies: CategoryPolicyTable) -> BaseStorageBackend:
    """Construct the single active backend. Missing credentials raise ConfigurationError here."""
    if settings.backend == BackendKind.LOCAL:
        return build_local_backend(settings)
    if settings.backend == BackendKind.S3:
        return build_s3_backend(settings)
    if settings.backend == BackendKind.MANAGED:
        return build_managed_backend(settings, policies)
    if settings.backend == BackendKind.GDRIVE:
        return build_drive_backend(settings)
    raise ConfigurationError(f"Unsupported storage backend: {settings.backend}")
