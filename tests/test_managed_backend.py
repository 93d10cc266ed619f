"""
Tests for the managed storage backend against an in-memory Supabase Storage API.

The fake API is served through httpx.MockTransport, so no network is used.
"""

import json
import os
import sys
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

import httpx

TEST_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(TEST_DIR)
sys.path.insert(0, PROJECT_ROOT)

from acer_storage.services.storage.backends.managed import MANAGED_BUCKETS, ManagedBucket, ManagedStorageBackend
from acer_storage.services.storage.exceptions import (
    BackendUnavailable,
    ConfigurationError,
    InvalidKeyError,
    ObjectNotFoundError,
)
from acer_storage.services.storage.interfaces import DeleteOutcome
from acer_storage.services.storage.policies import CategoryPolicyTable

SUPABASE_URL = 'https://project.supabase.co'
API_PREFIX = '/storage/v1'


class FakeStorageApi:
    """Just enough of the Supabase Storage REST API for the backend."""

    def __init__(self, buckets=None):
        self.buckets = dict(buckets or {})  # name -> {'name', 'public'}
        self.objects = {}  # (bucket, path) -> bytes
        self.requests = []
        self.fail_with = None
        self.hide_buckets = False
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            return self._handle(request)

    def _handle(self, request):
        path = request.url.path[len(API_PREFIX):]
        self.requests.append((request.method, path, request.headers.get('content-type')))
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={'statusCode': str(self.fail_with), 'error': 'failure'})
        body = json.loads(request.content) if request.content and 'json' in request.headers.get('content-type', '') else None

        if request.method == 'GET' and path == '/bucket':
            return httpx.Response(200, json=list(self.buckets.values()))
        if request.method == 'GET' and path.startswith('/bucket/'):
            name = path.split('/')[2]
            if name not in self.buckets or self.hide_buckets:
                return httpx.Response(400, json={'statusCode': '404', 'error': 'Bucket not found'})
            return httpx.Response(200, json=self.buckets[name])
        if request.method == 'POST' and path == '/bucket':
            if body['name'] in self.buckets:
                return httpx.Response(400, json={'statusCode': '409', 'message': 'The resource already exists'})
            self.buckets[body['name']] = {'name': body['name'], 'public': body['public']}
            return httpx.Response(200, json={'name': body['name']})
        if request.method == 'POST' and path.startswith('/object/sign/'):
            bucket, _, obj = path[len('/object/sign/'):].partition('/')
            if (bucket, obj) not in self.objects:
                return httpx.Response(400, json={'statusCode': '404', 'error': 'not_found'})
            return httpx.Response(200, json={
                'signedURL': f"/object/sign/{bucket}/{obj}?token=t{len(self.requests)}&exp={body['expiresIn']}",
            })
        if request.method == 'POST' and path.startswith('/object/list/'):
            bucket = path[len('/object/list/'):]
            prefix = body['prefix']
            names = sorted(p[len(prefix) + 1:] for (b, p) in self.objects if b == bucket and p.startswith(prefix + '/'))
            page = names[body['offset']:body['offset'] + body['limit']]
            return httpx.Response(200, json=[{'id': f"id-{n}", 'name': n} for n in page])
        if request.method == 'POST' and path.startswith('/object/'):
            bucket, _, obj = path[len('/object/'):].partition('/')
            if bucket not in self.buckets:
                return httpx.Response(400, json={'statusCode': '404', 'error': 'Bucket not found'})
            if (bucket, obj) in self.objects:
                return httpx.Response(400, json={'statusCode': '409', 'error': 'Duplicate'})
            self.objects[(bucket, obj)] = request.content
            return httpx.Response(200, json={'Key': f"{bucket}/{obj}", 'Id': f"id-{obj}"})
        if request.method == 'DELETE' and path.startswith('/object/'):
            bucket = path[len('/object/'):]
            removed = []
            for obj in body['prefixes']:
                if self.objects.pop((bucket, obj), None) is not None:
                    removed.append({'name': obj})
            return httpx.Response(200, json=removed)
        return httpx.Response(404, json={'error': 'route not found'})


def _backend(api, **kwargs):
    return ManagedStorageBackend(url=SUPABASE_URL, service_key='service-role-key',
                                 transport=httpx.MockTransport(api), **kwargs)


class TestManagedPutAndDelete(unittest.TestCase):

    def setUp(self):
        self.api = FakeStorageApi()
        self.backend = _backend(self.api)

    def tearDown(self):
        self.backend.close()

    def test_put_creates_missing_bucket_with_declared_settings(self):
        result = self.backend.put('recordings/church-1/r.mp3', b'id3', 'audio/mpeg')
        self.assertEqual(result.key, 'recordings/church-1/r.mp3')
        self.assertEqual(result.provider_id, 'id-church-1/r.mp3')
        self.assertFalse(self.api.buckets['recordings']['public'])
        self.assertEqual(self.api.objects[('recordings', 'church-1/r.mp3')], b'id3')

    def test_put_sends_content_type(self):
        self.backend.put('avatars/default/a.png', b'png', 'image/png', public=True)
        uploads = [r for r in self.api.requests if r[0] == 'POST' and r[1].startswith('/object/avatars/')]
        self.assertEqual(uploads[0][2], 'image/png')

    def test_existing_bucket_is_not_recreated(self):
        self.api.buckets['avatars'] = {'name': 'avatars', 'public': True}
        self.backend.put('avatars/default/a.png', b'1', 'image/png')
        self.backend.put('avatars/default/b.png', b'2', 'image/png')
        self.assertFalse(any(r[:2] == ('POST', '/bucket') for r in self.api.requests))
        self.assertEqual(sum(1 for r in self.api.requests if r[1] == '/bucket/avatars'), 1)

    def test_concurrent_first_uploads_share_one_bucket(self):
        def upload(i):
            return self.backend.put(f"sequences/new-church/{i}.pdf", b'%PDF', 'application/pdf').key

        with ThreadPoolExecutor(max_workers=6) as executor:
            keys = list(executor.map(upload, range(12)))
        self.assertEqual(len(set(keys)), 12)
        self.assertEqual(sum(1 for r in self.api.requests if r[:2] == ('POST', '/bucket')), 1)

    def test_losing_bucket_creation_race_is_fine(self):
        # Another process created the bucket between our lookup and our create
        self.api.buckets['multimedia'] = {'name': 'multimedia', 'public': True}
        self.api.hide_buckets = True
        self.backend.put('multimedia/default/m.gif', b'gif', 'image/gif')
        self.assertIn(('multimedia', 'default/m.gif'), self.api.objects)

    def test_delete_is_idempotent(self):
        self.backend.put('sequences/church-1/s.pdf', b'%PDF', 'application/pdf')
        self.assertEqual(self.backend.delete('sequences/church-1/s.pdf'), DeleteOutcome.DELETED)
        self.assertEqual(self.backend.delete('sequences/church-1/s.pdf'), DeleteOutcome.NOT_FOUND)

    def test_server_error_is_backend_unavailable(self):
        self.api.fail_with = 503
        with self.assertRaises(BackendUnavailable) as ctx:
            self.backend.delete('sequences/church-1/s.pdf')
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertNotIn('service-role-key', str(ctx.exception))

    def test_transport_error_is_backend_unavailable(self):
        def broken(request):
            raise httpx.ConnectError('connection refused', request=request)

        backend = _backend(broken)
        try:
            with self.assertRaises(BackendUnavailable):
                backend.put('avatars/default/a.png', b'1', 'image/png')
        finally:
            backend.close()

    def test_unknown_bucket_key(self):
        with self.assertRaises(InvalidKeyError):
            self.backend.put('podcasts/default/p.mp3', b'1', 'audio/mpeg')


class TestManagedUrls(unittest.TestCase):

    def setUp(self):
        self.api = FakeStorageApi()
        self.backend = _backend(self.api, signed_url_ttl=600)

    def tearDown(self):
        self.backend.close()

    def test_public_bucket_url_is_stable(self):
        url = self.backend.resolve_access_url('avatars/church-1/a.png', public=True)
        self.assertEqual(url, f"{SUPABASE_URL}/storage/v1/object/public/avatars/church-1/a.png")
        self.assertEqual(url, self.backend.resolve_access_url('avatars/church-1/a.png', public=True))

    def test_visibility_comes_from_bucket_not_caller(self):
        url = self.backend.resolve_access_url('avatars/church-1/a.png', public=False)
        self.assertIn('/object/public/avatars/', url)

    def test_private_bucket_is_signed(self):
        self.backend.put('recordings/church-1/r.mp3', b'id3', 'audio/mpeg')
        first = self.backend.resolve_access_url('recordings/church-1/r.mp3', public=True, expires_in=120)
        self.assertTrue(first.startswith(f"{SUPABASE_URL}/storage/v1/object/sign/recordings/church-1/r.mp3?token="))
        self.assertIn('exp=120', first)
        second = self.backend.resolve_access_url('recordings/church-1/r.mp3', public=False)
        self.assertIn('exp=600', second)
        self.assertNotEqual(first, second)

    def test_signing_missing_object(self):
        with self.assertRaises(ObjectNotFoundError):
            self.backend.resolve_access_url('recordings/church-1/missing.mp3', public=False)

    def test_list_keys(self):
        self.backend.put('recordings/church-1/b.mp3', b'1', 'audio/mpeg')
        self.backend.put('recordings/church-1/a.mp3', b'2', 'audio/mpeg')
        self.backend.put('recordings/church-2/c.mp3', b'3', 'audio/mpeg')
        self.assertEqual(self.backend.list_keys('recordings/church-1'),
                         ['recordings/church-1/a.mp3', 'recordings/church-1/b.mp3'])


class TestManagedProvisioning(unittest.TestCase):

    def test_bucket_table_matches_category_policies(self):
        ManagedStorageBackend.verify_visibility(CategoryPolicyTable())
        for policy in CategoryPolicyTable():
            self.assertEqual(MANAGED_BUCKETS[policy.folder].public, policy.is_public)

    def test_visibility_drift_is_configuration_error(self):
        class DriftedBackend(ManagedStorageBackend):
            BUCKETS = dict(MANAGED_BUCKETS, recordings=ManagedBucket('recordings', True, 1, ('audio/mpeg',)))

        with self.assertRaises(ConfigurationError):
            DriftedBackend.verify_visibility(CategoryPolicyTable())

    def test_provision_dry_run_and_create(self):
        api = FakeStorageApi(buckets={'avatars': {'name': 'avatars', 'public': True}})
        backend = _backend(api)
        try:
            report = backend.provision(dry_run=True)
            self.assertEqual(report['avatars'], 'exists')
            self.assertEqual(report['recordings'], 'would_create')
            self.assertEqual(set(api.buckets), {'avatars'})

            report = backend.provision()
            self.assertEqual(report['sequences'], 'created')
            self.assertEqual(set(api.buckets), set(MANAGED_BUCKETS))
            self.assertEqual(backend.verify_provisioned_visibility(), [])
        finally:
            backend.close()

    def test_verify_reports_mismatch(self):
        api = FakeStorageApi(buckets={name: {'name': name, 'public': True} for name in MANAGED_BUCKETS})
        backend = _backend(api)
        try:
            problems = backend.verify_provisioned_visibility()
        finally:
            backend.close()
        self.assertEqual(len(problems), 2)
        self.assertTrue(any("'recordings'" in p for p in problems))

    def test_missing_credentials(self):
        with self.assertRaises(ConfigurationError):
            ManagedStorageBackend(url='', service_key='k')
        with self.assertRaises(ConfigurationError):
            ManagedStorageBackend(url=SUPABASE_URL, service_key=None)


if __name__ == '__main__':
    unittest.main()
