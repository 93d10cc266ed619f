"""
Storage backend implementations.
"""

from .base import BaseStorageBackend
from .drive import DriveStorageBackend
from .local import LocalStorageBackend
from .managed import MANAGED_BUCKETS, ManagedBucket, ManagedStorageBackend
from .s3 import S3StorageBackend

__all__ = [
    'BaseStorageBackend',
    'LocalStorageBackend',
    'S3StorageBackend',
    'ManagedStorageBackend',
    'ManagedBucket',
    'MANAGED_BUCKETS',
    'DriveStorageBackend',
]
