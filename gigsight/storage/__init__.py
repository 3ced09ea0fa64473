"""
Object storage backends for uploaded media.
"""

from .abstract import (
    StorageBackend, LocalStorage, S3Storage, StorageError,
    StorageNotFoundError, create_storage
)

__all__ = [
    'StorageBackend',
    'LocalStorage',
    'S3Storage',
    'StorageError',
    'StorageNotFoundError',
    'create_storage',
]
