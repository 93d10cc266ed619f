"""
Tests for object key generation and key parsing.

Run with: python -m pytest tests/test_key_naming.py
"""

import os
import random
import sys
import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor

TEST_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(TEST_DIR)
sys.path.insert(0, PROJECT_ROOT)

from acer_storage.services.storage.exceptions import InvalidKeyError, InvalidTenantError
from acer_storage.services.storage.naming import (
    derive_key,
    generate_base_name,
    local_path_from_key,
    parse_storage_key,
    sanitize_extension,
    validate_key,
    validate_tenant_id,
)


class TestDeriveKey(unittest.TestCase):

    def test_extension_is_preserved_and_lower_cased(self):
        key = derive_key('Sunday Service.MP3')
        self.assertEqual(key.extension, 'mp3')
        self.assertTrue(key.file_name.endswith('.mp3'))

    def test_tenant_is_a_separate_segment(self):
        key = derive_key('me.png', 'church-42')
        self.assertEqual(key.tenant_id, 'church-42')
        self.assertEqual(key.path, f"church-42/{key.file_name}")
        self.assertEqual(key.storage_key('avatars'), f"avatars/church-42/{key.file_name}")
        self.assertNotIn('church-42', key.base)

    def test_missing_tenant_uses_default_segment(self):
        key = derive_key('me.png')
        self.assertEqual(key.path, key.file_name)
        self.assertTrue(key.storage_key('avatars').startswith('avatars/default/'))

    def test_name_without_extension(self):
        key = derive_key('README')
        self.assertEqual(key.extension, '')
        self.assertEqual(key.file_name, key.base)

    def test_base_name_carries_uuid4_entropy(self):
        base = generate_base_name()
        self.assertEqual(len(base), 32)
        self.assertEqual(base[12], '4')
        int(base, 16)

    def test_no_collisions_for_identical_inputs(self):
        keys = {derive_key('hymn.mp3', 'church-1').storage_key('recordings') for _ in range(10_000)}
        self.assertEqual(len(keys), 10_000)

    def test_no_collisions_across_threads(self):
        def batch(_):
            return [derive_key('hymn.mp3', 'church-1').file_name for _ in range(500)]

        with ThreadPoolExecutor(max_workers=8) as executor:
            names = [name for chunk in executor.map(batch, range(8)) for name in chunk]
        self.assertEqual(len(set(names)), len(names))

    def test_seeded_generator_is_reproducible(self):
        first = [derive_key('a.pdf', 't', rng=random.Random(1234)).file_name for _ in range(3)]
        second = [derive_key('a.pdf', 't', rng=random.Random(1234)).file_name for _ in range(3)]
        self.assertEqual(first, second)

        rng = random.Random(1234)
        sequence = [derive_key('a.pdf', rng=rng).base for _ in range(5)]
        self.assertEqual(len(set(sequence)), 5)


class TestTraversal(unittest.TestCase):

    def test_traversal_name_keeps_only_a_safe_extension(self):
        key = derive_key('../../etc/passwd')
        storage_key = key.storage_key('sequences')
        self.assertNotIn('..', storage_key.split('/'))
        self.assertEqual(key.extension, '')

    def test_extension_sanitizing(self):
        self.assertEqual(sanitize_extension('photo.JPEG'), 'jpeg')
        self.assertEqual(sanitize_extension('..\\..\\win.ini'), 'ini')
        self.assertEqual(sanitize_extension('/abs/path/file.tar.gz'), 'gz')
        self.assertEqual(sanitize_extension('evil.p\x00hp'), 'php')
        self.assertEqual(sanitize_extension('weird.m/p3'), '')
        self.assertEqual(sanitize_extension(None), '')
        self.assertEqual(sanitize_extension('dots...'), '')

    def test_non_latin_names_keep_their_extension(self):
        for name, ext in (('詩篇.mp3', 'mp3'), ('ترنيمة.png', 'png'), ('хор.pdf', 'pdf'), ('Псалом 23.WAV', 'wav')):
            key = derive_key(name)
            self.assertEqual(key.extension, ext, name)
            self.assertTrue(key.file_name.endswith(f".{ext}"))
        self.assertEqual(sanitize_extension('合唱.mp３'), 'mp3')
        self.assertEqual(sanitize_extension('詩篇.詩'), '')

    def test_traversal_never_escapes_local_root(self):
        with tempfile.TemporaryDirectory() as root:
            key = derive_key('../../etc/passwd', 'church-1').storage_key('sequences')
            path = local_path_from_key(root, key)
            self.assertTrue(os.path.realpath(path).startswith(os.path.realpath(root) + os.sep))

            with self.assertRaises(InvalidKeyError):
                local_path_from_key(root, 'sequences/../../etc/passwd')


class TestTenantValidation:

    def test_none_is_allowed(self):
        assert validate_tenant_id(None) is None

    def test_opaque_values_pass_through(self):
        assert validate_tenant_id('church 42 (Lyon)') == 'church 42 (Lyon)'

    def test_rejects_unusable_segments(self):
        for bad in ('', '   ', 'a/b', 'a\\b', '..', '.', 'x\x00y', 42):
            try:
                validate_tenant_id(bad)
            except InvalidTenantError:
                continue
            raise AssertionError(f"{bad!r} should be rejected")

    def test_derive_key_validates_tenant(self):
        try:
            derive_key('me.png', '../other-church')
        except InvalidTenantError:
            pass
        else:
            raise AssertionError('expected InvalidTenantError')


class TestKeyParsing:

    def test_validate_key_normalizes_separators(self):
        assert validate_key('avatars\\default//x.png') == 'avatars/default/x.png'

    def test_validate_key_rejects_unsafe_keys(self):
        for bad in ('', '/avatars/default/x.png', 'C:/x', 'avatars/../x', 'avatars/./x', 'a\x00b', None):
            try:
                validate_key(bad)
            except InvalidKeyError:
                continue
            raise AssertionError(f"{bad!r} should be rejected")

    def test_parse_storage_key(self):
        parts = parse_storage_key('recordings/church-1/abc.mp3')
        assert parts.folder == 'recordings'
        assert parts.tenant_id == 'church-1'
        assert parts.name == 'abc.mp3'
        assert parse_storage_key('recordings/default/abc.mp3').tenant_id is None

    def test_parse_storage_key_needs_three_segments(self):
        for bad in ('recordings/abc.mp3', 'a/b/c/d'):
            try:
                parse_storage_key(bad)
            except InvalidKeyError:
                continue
            raise AssertionError(f"{bad!r} should be rejected")


if __name__ == '__main__':
    unittest.main()
