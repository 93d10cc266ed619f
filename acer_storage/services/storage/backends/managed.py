"""
Managed storage backend (Supabase Storage REST API).

Each category maps to one bucket from a fixed table. Visibility of an object is
always taken from that table, never from the caller, and the table must agree
with the category policies (checked by ``verify_visibility``).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import quote, urlparse

import httpx

from ..exceptions import BackendUnavailable, ConfigurationError, InvalidKeyError, ObjectNotFoundError
from ..interfaces import BackendKind, DeleteOutcome, PutResult, Visibility
from ..naming import parse_storage_key, validate_key
from ..policies import MB
from .base import BaseStorageBackend

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 1000


@dataclass(frozen=True)
class ManagedBucket:
    name: str
    public: bool
    file_size_limit: int
    allowed_mime_types: Tuple[str, ...]


MANAGED_BUCKETS = MappingProxyType({
    'avatars': ManagedBucket('avatars', True, 5 * MB, ('image/jpeg', 'image/png', 'image/webp')),
    'recordings': ManagedBucket('recordings', False, 50 * MB, (
        'audio/mpeg', 'audio/mp3', 'audio/wav', 'audio/ogg', 'audio/mp4', 'audio/m4a',
    )),
    'sequences': ManagedBucket('sequences', False, 10 * MB, ('application/pdf', 'image/jpeg', 'image/png', 'text/plain')),
    'multimedia': ManagedBucket('multimedia', True, 20 * MB, ('image/jpeg', 'image/png', 'image/webp', 'image/gif')),
})


def _json_or_empty(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


def _error_status(response: httpx.Response) -> str:
    """Supabase often answers 400 with the real status in the JSON body."""
    body = _json_or_empty(response)
    if isinstance(body, dict):
        return str(body.get('statusCode') or body.get('status') or response.status_code)
    return str(response.status_code)


def _is_not_found(response: httpx.Response) -> bool:
    if response.status_code == 404:
        return True
    body = _json_or_empty(response)
    if not isinstance(body, dict):
        return False
    return _error_status(response) == '404' or str(body.get('error', '')).lower() in ('not_found', 'not found')


def _is_conflict(response: httpx.Response) -> bool:
    if response.status_code == 409:
        return True
    body = _json_or_empty(response)
    message = str(body.get('message', '')).lower() if isinstance(body, dict) else ''
    return _error_status(response) == '409' or 'already exists' in message


class ManagedStorageBackend(BaseStorageBackend):
    """Supabase Storage over its REST API using a shared httpx client."""

    KIND = BackendKind.MANAGED
    SUPPORTS_SIGNED_URLS = True
    BUCKETS = MANAGED_BUCKETS

    def __init__(self, *, url: str, service_key: str, signed_url_ttl: int = 3600,
                 timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self.url = (url or '').split('#')[0].strip().rstrip('/')
        self.service_key = service_key
        self.signed_url_ttl = int(signed_url_ttl)
        super().__init__(timeout=timeout)

        self.api_base = f"{self.url}/storage/v1"
        self._ready_buckets: Set[str] = set()
        self._bucket_lock = threading.Lock()
        self.client = httpx.Client(
            base_url=self.api_base,
            headers={'Authorization': f"Bearer {self.service_key}", 'apikey': self.service_key},
            timeout=httpx.Timeout(self.timeout),
            transport=transport,
        )

    def _validate_config(self) -> None:
        if not self.url or not urlparse(self.url).scheme.startswith('http'):
            raise ConfigurationError('SUPABASE_URL is required for the managed storage backend', backend=self.name)
        if not self.service_key:
            raise ConfigurationError('SUPABASE_SERVICE_ROLE_KEY is required for the managed storage backend',
                                     backend=self.name)

    @classmethod
    def verify_visibility(cls, policies) -> None:
        """
        Check the bucket table against the category policies.

        Raises:
            ConfigurationError: If a category has no bucket or the visibilities differ
        """
        declared = policies.visibility_map()
        for folder, visibility in declared.items():
            bucket = cls.BUCKETS.get(folder)
            if bucket is None:
                raise ConfigurationError(f"No managed bucket declared for folder '{folder}'", backend=cls.KIND.value)
            if bucket.public != (visibility == Visibility.PUBLIC):
                raise ConfigurationError(
                    f"Bucket '{folder}' is {'public' if bucket.public else 'private'} "
                    f"but its category is {visibility.value}",
                    backend=cls.KIND.value,
                )
        extra = set(cls.BUCKETS) - set(declared)
        if extra:
            raise ConfigurationError(f"Managed buckets without a category: {', '.join(sorted(extra))}",
                                     backend=cls.KIND.value)

    def _bucket_and_path(self, key: str) -> Tuple[ManagedBucket, str]:
        parts = parse_storage_key(key)
        bucket = self.BUCKETS.get(parts.folder)
        if bucket is None:
            raise InvalidKeyError(f"Unknown bucket '{parts.folder}'", key=key, backend=self.name)
        return bucket, f"{parts.tenant_segment}/{parts.name}"

    def _request(self, method: str, url: str, action: str, key: Optional[str] = None, **kwargs) -> httpx.Response:
        try:
            return self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise BackendUnavailable(f"Managed storage {action} timed out after {self.timeout}s",
                                     key=key, backend=self.name) from exc
        except httpx.HTTPError as exc:
            raise BackendUnavailable(f"Managed storage {action} failed: {type(exc).__name__}",
                                     key=key, backend=self.name) from exc

    def _fail(self, response: httpx.Response, action: str, key: Optional[str] = None) -> BackendUnavailable:
        return BackendUnavailable(
            f"Managed storage {action} failed with status {_error_status(response)}",
            status_code=response.status_code, key=key, backend=self.name,
        )

    def ensure_container(self, bucket: ManagedBucket) -> None:
        """Create the bucket with its declared settings if missing. A concurrent creator winning is fine."""
        if bucket.name in self._ready_buckets:
            return
        with self._bucket_lock:
            if bucket.name in self._ready_buckets:
                return
            response = self._request('GET', f"/bucket/{bucket.name}", 'get_bucket')
            if response.status_code >= 400:
                if not _is_not_found(response):
                    raise self._fail(response, 'get_bucket')
                self._create_bucket(bucket)
            self._ready_buckets.add(bucket.name)

    def _create_bucket(self, bucket: ManagedBucket) -> None:
        response = self._request('POST', '/bucket', 'create_bucket', json={
            'id': bucket.name,
            'name': bucket.name,
            'public': bucket.public,
            'file_size_limit': bucket.file_size_limit,
            'allowed_mime_types': list(bucket.allowed_mime_types),
        })
        if response.status_code >= 400:
            if not _is_conflict(response):
                raise self._fail(response, 'create_bucket')
            logger.debug(f"Managed bucket {bucket.name} was created concurrently")
        else:
            logger.info(f"Created managed bucket {bucket.name} (public={bucket.public})")

    def put(self, key: str, data: bytes, mime_type: str, *, public: bool = False) -> PutResult:
        key = validate_key(key)
        bucket, path = self._bucket_and_path(key)
        self.ensure_container(bucket)
        response = self._request('POST', f"/object/{bucket.name}/{quote(path)}", 'upload', key,
                                 content=data, headers={
                                     'Content-Type': mime_type,
                                     'cache-control': 'max-age=3600',
                                     'x-upsert': 'false',
                                 })
        if response.status_code >= 400:
            raise self._fail(response, 'upload', key)
        body = _json_or_empty(response)
        provider_id = body.get('Id') or body.get('Key') if isinstance(body, dict) else None
        return PutResult(key=key, provider_id=provider_id, size=len(data), content_type=mime_type)

    def delete(self, key: str) -> DeleteOutcome:
        key = validate_key(key)
        bucket, path = self._bucket_and_path(key)
        response = self._request('DELETE', f"/object/{bucket.name}", 'delete', key, json={'prefixes': [path]})
        if response.status_code >= 400:
            if _is_not_found(response):
                return DeleteOutcome.NOT_FOUND
            raise self._fail(response, 'delete', key)
        removed = _json_or_empty(response)
        return DeleteOutcome.DELETED if removed else DeleteOutcome.NOT_FOUND

    def resolve_access_url(self, key: str, *, public: bool, expires_in: Optional[int] = None) -> str:
        key = validate_key(key)
        bucket, path = self._bucket_and_path(key)
        if public != bucket.public:
            logger.warning(f"Caller visibility for {key} disagrees with bucket '{bucket.name}'; using bucket setting")
        if bucket.public:
            return f"{self.api_base}/object/public/{bucket.name}/{quote(path)}"

        response = self._request('POST', f"/object/sign/{bucket.name}/{quote(path)}", 'sign', key,
                                 json={'expiresIn': int(expires_in or self.signed_url_ttl)})
        if response.status_code >= 400:
            if _is_not_found(response):
                raise ObjectNotFoundError('Object not found', key=key, backend=self.name)
            raise self._fail(response, 'sign', key)
        body = _json_or_empty(response)
        signed = body.get('signedURL') or body.get('signedUrl') if isinstance(body, dict) else None
        if not signed:
            raise BackendUnavailable('Managed storage returned no signed URL', key=key, backend=self.name)
        if signed.startswith('http'):
            return signed
        return f"{self.api_base}/{signed.lstrip('/')}"

    def list_keys(self, prefix: str) -> List[str]:
        prefix = validate_key(prefix)
        folder, _, rest = prefix.partition('/')
        bucket = self.BUCKETS.get(folder)
        if bucket is None:
            raise InvalidKeyError(f"Unknown bucket '{folder}'", key=prefix, backend=self.name)

        keys = []
        offset = 0
        while True:
            response = self._request('POST', f"/object/list/{bucket.name}", 'list', prefix, json={
                'prefix': rest,
                'limit': LIST_PAGE_SIZE,
                'offset': offset,
                'sortBy': {'column': 'name', 'order': 'asc'},
            })
            if response.status_code >= 400:
                raise self._fail(response, 'list', prefix)
            items = _json_or_empty(response) or []
            for item in items:
                # folders come back with a null id
                if item.get('id') is None:
                    continue
                keys.append('/'.join(part for part in (bucket.name, rest, item['name']) if part))
            if len(items) < LIST_PAGE_SIZE:
                break
            offset += LIST_PAGE_SIZE
        return sorted(keys)

    def fetch_provisioned_buckets(self) -> Dict[str, Dict[str, Any]]:
        response = self._request('GET', '/bucket', 'list_buckets')
        if response.status_code >= 400:
            raise self._fail(response, 'list_buckets')
        return {item['name']: item for item in (_json_or_empty(response) or [])}

    def verify_provisioned_visibility(self) -> List[str]:
        """Problems between the declared table and what the provider actually has."""
        provisioned = self.fetch_provisioned_buckets()
        problems = []
        for name, bucket in self.BUCKETS.items():
            remote = provisioned.get(name)
            if remote is None:
                problems.append(f"bucket '{name}' is not provisioned")
            elif bool(remote.get('public')) != bucket.public:
                problems.append(
                    f"bucket '{name}' is {'public' if remote.get('public') else 'private'} "
                    f"but declared {'public' if bucket.public else 'private'}"
                )
        return problems

    def provision(self, *, dry_run: bool = False) -> Dict[str, str]:
        """Create missing buckets. Existing buckets are reported, never modified."""
        provisioned = self.fetch_provisioned_buckets()
        report = {}
        for name, bucket in self.BUCKETS.items():
            remote = provisioned.get(name)
            if remote is not None:
                report[name] = 'exists' if bool(remote.get('public')) == bucket.public else 'visibility_mismatch'
                continue
            if dry_run:
                report[name] = 'would_create'
                continue
            self._create_bucket(bucket)
            self._ready_buckets.add(name)
            report[name] = 'created'
        return report

    def details(self):
        return {
            'host': urlparse(self.url).netloc,
            'buckets': {name: ('public' if b.public else 'private') for name, b in self.BUCKETS.items()},
        }

    def close(self) -> None:
        self.client.close()
