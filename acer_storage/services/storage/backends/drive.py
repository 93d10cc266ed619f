"""
Google Drive storage backend.

Uses OAuth2 user credentials (client id/secret + refresh token).
"""

from __future__ import annotations

import io
import logging
import threading
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from ..exceptions import (
    BackendUnavailable,
    ConfigurationError,
    InvalidKeyError,
    ObjectNotFoundError,
    PartialUploadFailure,
)
from ..interfaces import DEFAULT_TENANT_SEGMENT, BackendKind, DeleteOutcome, DeliveryTarget, PutResult
from ..naming import StorageKeyParts, parse_storage_key, validate_key
from .base import BaseStorageBackend

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/drive']
TOKEN_URI = 'https://oauth2.googleapis.com/token'
FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'
PUBLIC_URL_TEMPLATE = 'https://drive.google.com/uc?id={file_id}&export=download'


def _escape_query_value(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


def _http_status(exc: HttpError) -> Optional[int]:
    resp = getattr(exc, 'resp', None)
    status = getattr(resp, 'status', None)
    return int(status) if status is not None else None


def drive_folder_name(folder: str, tenant_segment: str) -> str:
    """Drive folders are flat: ``recordings`` or ``recordings-{tenant}``."""
    if tenant_segment == DEFAULT_TENANT_SEGMENT:
        return folder
    return f"{folder}-{tenant_segment}"


class DriveStorageBackend(BaseStorageBackend):
    """Google Drive implementation.

    Keys returned by ``put`` end with the Drive file id
    (``{folder}/{tenant|default}/{file_id}``) because Drive addresses files by id.
    Drive has no signed URLs: private objects are always reached through the
    application's proxy route.

    googleapiclient services are not thread-safe, so each thread gets its own
    service built from the shared credentials.
    """

    KIND = BackendKind.GDRIVE
    SUPPORTS_SIGNED_URLS = False

    def __init__(self, *, client_id: str, client_secret: str, refresh_token: str,
                 root_folder_id: Optional[str] = None, proxy_prefix: str = '/storage',
                 timeout: Optional[float] = None, service_factory: Optional[Callable[[], object]] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.root_folder_id = root_folder_id or None
        self.proxy_prefix = (proxy_prefix or '/storage').rstrip('/')
        super().__init__(timeout=timeout)

        self._folder_ids: Dict[str, str] = {}
        self._folder_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._local = threading.local()
        self._credentials = Credentials(
            None,
            refresh_token=self.refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_uri=TOKEN_URI,
            scopes=SCOPES,
        )
        self._service_factory = service_factory or self._build_service
        self._service()

    def _validate_config(self) -> None:
        missing = [name for name, value in (
            ('GOOGLE_DRIVE_CLIENT_ID', self.client_id),
            ('GOOGLE_DRIVE_CLIENT_SECRET', self.client_secret),
            ('GOOGLE_DRIVE_REFRESH_TOKEN', self.refresh_token),
        ) if not value]
        if missing:
            raise ConfigurationError(f"Incomplete Google Drive configuration: {', '.join(missing)} missing",
                                     backend=self.name)

    def _build_service(self):
        http = AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=self.timeout))
        return build('drive', 'v3', http=http, cache_discovery=False)

    def _service(self):
        service = getattr(self._local, 'service', None)
        if service is None:
            service = self._service_factory()
            self._local.service = service
        return service

    def _unavailable(self, exc: Exception, action: str, key: Optional[str] = None) -> BackendUnavailable:
        if isinstance(exc, HttpError):
            status = _http_status(exc)
            return BackendUnavailable(f"Google Drive {action} failed with status {status}", status_code=status,
                                      key=key, backend=self.name)
        return BackendUnavailable(f"Google Drive {action} failed: {type(exc).__name__}", key=key, backend=self.name)

    # --- folders ---

    def _lock_for(self, folder_name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._folder_locks.get(folder_name)
            if lock is None:
                lock = self._folder_locks[folder_name] = threading.Lock()
            return lock

    def _folder_query(self, folder_name: str) -> str:
        query = (f"name = '{_escape_query_value(folder_name)}' and mimeType = '{FOLDER_MIME_TYPE}' "
                 f"and trashed = false")
        if self.root_folder_id:
            query += f" and '{_escape_query_value(self.root_folder_id)}' in parents"
        return query

    def _find_folders(self, folder_name: str) -> List[dict]:
        response = self._service().files().list(
            q=self._folder_query(folder_name),
            fields='files(id, name, createdTime)',
            orderBy='createdTime',
            spaces='drive',
            pageSize=10,
        ).execute()
        return response.get('files', [])

    def _create_folder(self, folder_name: str) -> str:
        body = {
            'name': folder_name,
            'mimeType': FOLDER_MIME_TYPE,
            'description': f"ACER Music - {folder_name}",
        }
        if self.root_folder_id:
            body['parents'] = [self.root_folder_id]
        folder = self._service().files().create(body=body, fields='id').execute()
        return folder['id']

    def ensure_folder(self, folder_name: str) -> str:
        """
        Return the id of the folder called ``folder_name``, creating it if needed.

        Searches before creating. If another process created the same folder at
        the same moment, the oldest folder wins and our copy is removed, so every
        caller ends up with the same folder id.
        """
        cached = self._folder_ids.get(folder_name)
        if cached:
            return cached
        with self._lock_for(folder_name):
            cached = self._folder_ids.get(folder_name)
            if cached:
                return cached
            try:
                existing = self._find_folders(folder_name)
                if existing:
                    folder_id = existing[0]['id']
                else:
                    created_id = self._create_folder(folder_name)
                    folder_id = self._settle_folder_race(folder_name, created_id)
            except (HttpError, httplib2.HttpLib2Error, OSError) as exc:
                raise self._unavailable(exc, f"folder lookup for '{folder_name}'") from exc
            self._folder_ids[folder_name] = folder_id
            return folder_id

    def _settle_folder_race(self, folder_name: str, created_id: str) -> str:
        matches = self._find_folders(folder_name)
        if not matches:
            return created_id
        winner = matches[0]['id']
        if winner != created_id:
            logger.info(f"Drive folder '{folder_name}' was created concurrently; using {winner}")
            try:
                self._service().files().delete(fileId=created_id).execute()
            except HttpError as exc:
                if _http_status(exc) != 404:
                    logger.warning(f"Could not remove duplicate Drive folder {created_id}: {exc}")
        return winner

    def _folder_for(self, parts: StorageKeyParts) -> str:
        return drive_folder_name(parts.folder, parts.tenant_segment)

    # --- contract ---

    def _grant_reader(self, file_id: str) -> None:
        self._service().permissions().create(
            fileId=file_id,
            body={'role': 'reader', 'type': 'anyone'},
        ).execute()

    def put(self, key: str, data: bytes, mime_type: str, *, public: bool = False) -> PutResult:
        parts = parse_storage_key(key)
        folder_id = self.ensure_folder(self._folder_for(parts))

        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        try:
            created = self._service().files().create(
                body={
                    'name': parts.name,
                    'parents': [folder_id],
                    'description': f"ACER Music - {parts.folder}",
                },
                media_body=media,
                fields='id,name',
            ).execute()
        except (HttpError, httplib2.HttpLib2Error, OSError) as exc:
            raise self._unavailable(exc, 'upload', key) from exc

        file_id = created['id']
        stored_key = f"{parts.folder}/{parts.tenant_segment}/{file_id}"

        # Upload success does not make the file readable; grant comes second.
        if public:
            try:
                self._grant_reader(file_id)
            except (HttpError, httplib2.HttpLib2Error, OSError) as exc:
                logger.error(f"Drive file {file_id} stored but public permission grant failed")
                raise PartialUploadFailure(
                    'File stored but could not be made public',
                    file_name=parts.name, provider_id=file_id, key=stored_key, backend=self.name,
                ) from exc

        return PutResult(key=stored_key, provider_id=file_id, size=len(data), content_type=mime_type)

    def grant_public_access(self, key: str) -> None:
        file_id = parse_storage_key(key).name
        try:
            self._grant_reader(file_id)
        except (HttpError, httplib2.HttpLib2Error, OSError) as exc:
            raise self._unavailable(exc, 'permission grant', key) from exc

    def delete(self, key: str) -> DeleteOutcome:
        file_id = parse_storage_key(key).name
        try:
            self._service().files().delete(fileId=file_id).execute()
        except HttpError as exc:
            if _http_status(exc) == 404:
                return DeleteOutcome.NOT_FOUND
            raise self._unavailable(exc, 'delete', key) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise self._unavailable(exc, 'delete', key) from exc
        return DeleteOutcome.DELETED

    def resolve_access_url(self, key: str, *, public: bool, expires_in: Optional[int] = None) -> str:
        parts = parse_storage_key(key)
        if public:
            return PUBLIC_URL_TEMPLATE.format(file_id=parts.name)
        return f"{self.proxy_prefix}/{quote(validate_key(key))}"

    def delivery_target(self, key: str, *, expires_in: Optional[int] = None) -> DeliveryTarget:
        # Drive cannot sign; webContentLink still requires a Google session with access
        file_id = parse_storage_key(key).name
        try:
            meta = self._service().files().get(fileId=file_id, fields='webContentLink,webViewLink').execute()
        except HttpError as exc:
            if _http_status(exc) == 404:
                raise ObjectNotFoundError('Object not found', key=key, backend=self.name) from exc
            raise self._unavailable(exc, 'metadata lookup', key) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise self._unavailable(exc, 'metadata lookup', key) from exc
        url = meta.get('webContentLink') or meta.get('webViewLink')
        if not url:
            raise BackendUnavailable('Google Drive returned no download link', key=key, backend=self.name)
        return DeliveryTarget(mode='redirect_url', url=url)

    def list_keys(self, prefix: str) -> List[str]:
        segments = validate_key(prefix).split('/')
        if len(segments) != 2:
            raise InvalidKeyError('Drive listing needs a folder/tenant prefix', key=prefix, backend=self.name)
        folder, tenant_segment = segments
        try:
            folders = self._find_folders(drive_folder_name(folder, tenant_segment))
            if not folders:
                return []
            query = f"'{folders[0]['id']}' in parents and trashed = false and mimeType != '{FOLDER_MIME_TYPE}'"
            keys = []
            page_token = None
            while True:
                response = self._service().files().list(
                    q=query, fields='nextPageToken, files(id)', pageToken=page_token, pageSize=100,
                ).execute()
                keys.extend(f"{folder}/{tenant_segment}/{item['id']}" for item in response.get('files', []))
                page_token = response.get('nextPageToken')
                if not page_token:
                    break
        except (HttpError, httplib2.HttpLib2Error, OSError) as exc:
            raise self._unavailable(exc, 'list', prefix) from exc
        return sorted(keys)

    def details(self):
        return {'root_folder_id': self.root_folder_id, 'proxy_prefix': self.proxy_prefix}

    def quota(self):
        try:
            response = self._service().about().get(fields='storageQuota').execute()
        except (HttpError, httplib2.HttpLib2Error, OSError) as exc:
            logger.error(f"Could not read Google Drive storage quota: {type(exc).__name__}")
            return None
        return response.get('storageQuota')
