"""S3-compatible storage backend (AWS S3 / MinIO)."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import BackendUnavailable, ConfigurationError
from ..interfaces import BackendKind, DeleteOutcome, PutResult
from ..naming import validate_key
from .base import BaseStorageBackend

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ('404', 'NoSuchKey', 'NotFound', 'NoSuchBucket')
LONG_CACHE_SECONDS = 31536000


def _error_code(exc: ClientError) -> str:
    response = getattr(exc, 'response', {}) or {}
    return str((response.get('Error') or {}).get('Code') or '')


def _status_code(exc: ClientError) -> Optional[int]:
    response = getattr(exc, 'response', {}) or {}
    return (response.get('ResponseMetadata') or {}).get('HTTPStatusCode')


def _is_not_found(exc: ClientError) -> bool:
    return _status_code(exc) == 404 or _error_code(exc) in _NOT_FOUND_CODES


class S3StorageBackend(BaseStorageBackend):
    """S3 storage backend. The boto3 client is built once and shared between threads."""

    KIND = BackendKind.S3
    SUPPORTS_SIGNED_URLS = True

    def __init__(self, *, bucket: str, region: Optional[str] = None, endpoint_url: Optional[str] = None,
                 access_key_id: Optional[str] = None, secret_access_key: Optional[str] = None,
                 session_token: Optional[str] = None, use_path_style: bool = False,
                 verify_ssl: bool = True, cdn_base_url: Optional[str] = None,
                 signed_url_ttl: int = 3600, timeout: Optional[float] = None, client=None):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url.rstrip('/') if endpoint_url else None
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.use_path_style = use_path_style
        self.verify_ssl = verify_ssl
        self.cdn_base_url = cdn_base_url.rstrip('/') if cdn_base_url else None
        self.signed_url_ttl = int(signed_url_ttl)
        super().__init__(timeout=timeout)

        self._bucket_ready = False
        self._bucket_lock = threading.Lock()
        self.client = client if client is not None else self._build_client()

    def _validate_config(self) -> None:
        if not self.bucket:
            raise ConfigurationError('AWS_S3_BUCKET is required for the S3 backend', backend=self.name)
        if not self.access_key_id or not self.secret_access_key:
            raise ConfigurationError('AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY are required for the S3 backend',
                                     backend=self.name)

    def _build_client(self):
        client_kwargs = {
            'service_name': 's3',
            'verify': self.verify_ssl,
            'aws_access_key_id': self.access_key_id,
            'aws_secret_access_key': self.secret_access_key,
        }
        if self.region:
            client_kwargs['region_name'] = self.region
        if self.endpoint_url:
            client_kwargs['endpoint_url'] = self.endpoint_url
        if self.session_token:
            client_kwargs['aws_session_token'] = self.session_token

        addressing_style = 'path' if self.use_path_style else 'auto'
        client_kwargs['config'] = Config(
            signature_version='s3v4',
            s3={'addressing_style': addressing_style},
            connect_timeout=self.timeout,
            read_timeout=self.timeout,
        )
        return boto3.client(**client_kwargs)

    def _unavailable(self, exc: Exception, action: str, key: Optional[str] = None) -> BackendUnavailable:
        if isinstance(exc, ClientError):
            code = _error_code(exc) or 'unknown'
            return BackendUnavailable(f"S3 {action} failed: {code}", status_code=_status_code(exc),
                                      key=key, backend=self.name)
        return BackendUnavailable(f"S3 {action} failed: {type(exc).__name__}", key=key, backend=self.name)

    def ensure_container(self) -> None:
        """Create the bucket if it is missing. Losing a creation race counts as success."""
        if self._bucket_ready:
            return
        with self._bucket_lock:
            if self._bucket_ready:
                return
            try:
                self.client.head_bucket(Bucket=self.bucket)
            except ClientError as exc:
                if _status_code(exc) == 403:
                    # head_bucket needs s3:ListBucket; put_object reports any real permission error
                    logger.warning(f"Cannot inspect S3 bucket {self.bucket} (403); assuming it exists")
                elif not _is_not_found(exc):
                    raise self._unavailable(exc, 'head_bucket') from exc
                else:
                    self._create_bucket()
            except BotoCoreError as exc:
                raise self._unavailable(exc, 'head_bucket') from exc
            self._bucket_ready = True

    def _create_bucket(self) -> None:
        kwargs = {'Bucket': self.bucket}
        if self.region and self.region != 'us-east-1' and not self.endpoint_url:
            kwargs['CreateBucketConfiguration'] = {'LocationConstraint': self.region}
        try:
            self.client.create_bucket(**kwargs)
            logger.info(f"Created S3 bucket {self.bucket}")
        except ClientError as exc:
            if _error_code(exc) != 'BucketAlreadyOwnedByYou':
                raise self._unavailable(exc, 'create_bucket') from exc
            logger.debug(f"S3 bucket {self.bucket} was created concurrently")
        except BotoCoreError as exc:
            raise self._unavailable(exc, 'create_bucket') from exc

    def put(self, key: str, data: bytes, mime_type: str, *, public: bool = False) -> PutResult:
        key = validate_key(key)
        self.ensure_container()
        cache_scope = 'public' if public else 'private'
        try:
            response = self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mime_type,
                CacheControl=f"{cache_scope}, max-age={LONG_CACHE_SECONDS}",
                Metadata={'upload-timestamp': datetime.now(timezone.utc).isoformat()},
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._unavailable(exc, 'put_object', key) from exc
        etag = (response.get('ETag') or '').strip('"') or None
        return PutResult(key=key, provider_id=etag, size=len(data), content_type=mime_type)

    def delete(self, key: str) -> DeleteOutcome:
        key = validate_key(key)
        # S3 deletes succeed for missing keys, so look first to report NOT_FOUND
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                return DeleteOutcome.NOT_FOUND
            raise self._unavailable(exc, 'head_object', key) from exc
        except BotoCoreError as exc:
            raise self._unavailable(exc, 'head_object', key) from exc

        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                return DeleteOutcome.NOT_FOUND
            raise self._unavailable(exc, 'delete_object', key) from exc
        except BotoCoreError as exc:
            raise self._unavailable(exc, 'delete_object', key) from exc
        return DeleteOutcome.DELETED

    def public_base_url(self) -> str:
        if self.cdn_base_url:
            return self.cdn_base_url
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}"
        region = self.region or 'us-east-1'
        return f"https://{self.bucket}.s3.{region}.amazonaws.com"

    def resolve_access_url(self, key: str, *, public: bool, expires_in: Optional[int] = None) -> str:
        key = validate_key(key)
        if public:
            return f"{self.public_base_url()}/{quote(key)}"
        try:
            return self.client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': key},
                ExpiresIn=int(expires_in or self.signed_url_ttl),
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._unavailable(exc, 'presign', key) from exc

    def list_keys(self, prefix: str) -> List[str]:
        prefix = validate_key(prefix).rstrip('/') + '/'
        keys = []
        try:
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(item['Key'] for item in page.get('Contents', []))
        except (ClientError, BotoCoreError) as exc:
            raise self._unavailable(exc, 'list_objects', prefix) from exc
        return sorted(keys)

    def details(self):
        return {
            'bucket': self.bucket,
            'region': self.region,
            'endpoint_url': self.endpoint_url,
            'cdn_base_url': self.cdn_base_url,
        }
