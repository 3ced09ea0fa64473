"""
Storage abstraction layer for GigSight.

Uploaded media and generated thumbnails live in an object store. The
pipeline only needs to read raw bytes, write derived files and hand out
short-lived download URLs, so backends implement just that.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Dict, Any
import logging

import boto3
from botocore.exceptions import ClientError

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageNotFoundError(StorageError):
    """Raised when a storage object is not found."""
    pass


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def fetch_bytes(self, path: str) -> bytes:
        """Load the object stored at path."""
        pass

    @abstractmethod
    def put_bytes(self, data: bytes, path: str, content_type: str = 'application/octet-stream') -> None:
        """Store data at path, replacing any existing object."""
        pass

    @abstractmethod
    def presigned_download_url(self, path: str, expires_in: Optional[int] = None) -> str:
        """Get a time-limited URL for reading the object."""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check if an object exists at the given path."""
        pass

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete object at the given path. Returns True if deleted."""
        pass


class LocalStorage(StorageBackend):
    """Local filesystem storage implementation."""

    def __init__(self, base_path: str):
        """
        Initialize local storage.

        Args:
            base_path: Base directory for storage
        """
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _full_path(self, path: str) -> Path:
        """Get full path from relative path."""
        full_path = (self.base_path / path).resolve()
        # Ensure path is within base directory
        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            raise StorageError(f"Path '{path}' is outside base directory")
        return full_path

    def fetch_bytes(self, path: str) -> bytes:
        full_path = self._full_path(path)
        if not full_path.is_file():
            raise StorageNotFoundError(f"File not found: {path}")
        return full_path.read_bytes()

    def put_bytes(self, data: bytes, path: str, content_type: str = 'application/octet-stream') -> None:
        full_path = self._full_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(data)
        logger.debug(f"Stored {len(data)} bytes at {path} ({content_type})")

    def presigned_download_url(self, path: str, expires_in: Optional[int] = None) -> str:
        """Get file URL (file:// for local storage; expiry is ignored)."""
        return self._full_path(path).as_uri()

    def exists(self, path: str) -> bool:
        return self._full_path(path).is_file()

    def delete(self, path: str) -> bool:
        full_path = self._full_path(path)
        if full_path.exists():
            full_path.unlink()
            return True
        return False


class S3Storage(StorageBackend):
    """Amazon S3 storage implementation."""

    def __init__(self, bucket_name: str, region: str = 'us-east-1',
                 access_key: Optional[str] = None, secret_key: Optional[str] = None,
                 url_expiry: int = 900, client=None):
        """
        Initialize S3 storage.

        Args:
            bucket_name: S3 bucket name
            region: AWS region
            access_key: AWS access key (uses environment/IAM if not provided)
            secret_key: AWS secret key (uses environment/IAM if not provided)
            url_expiry: Default presigned URL lifetime in seconds
            client: Pre-built boto3 S3 client
        """
        self.bucket_name = bucket_name
        self.region = region
        self.url_expiry = url_expiry

        if client is not None:
            self.s3_client = client
        elif access_key and secret_key:
            self.s3_client = boto3.client(
                's3',
                region_name=region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key
            )
        else:
            # Use environment variables or IAM role
            self.s3_client = boto3.client('s3', region_name=region)

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        return error.response.get('Error', {}).get('Code') in ('404', 'NoSuchKey', 'NotFound')

    def fetch_bytes(self, path: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=path)
        except ClientError as e:
            if self._is_missing(e):
                raise StorageNotFoundError(f"Object not found: {path}") from e
            raise
        return response['Body'].read()

    def put_bytes(self, data: bytes, path: str, content_type: str = 'application/octet-stream') -> None:
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=path,
            Body=data,
            ContentType=content_type
        )

    def presigned_download_url(self, path: str, expires_in: Optional[int] = None) -> str:
        return self.s3_client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.bucket_name, 'Key': path},
            ExpiresIn=expires_in or self.url_expiry
        )

    def exists(self, path: str) -> bool:
        """Check if a file exists in S3."""
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=path)
            return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise

    def delete(self, path: str) -> bool:
        """Delete a file from S3."""
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=path)
            return True
        except ClientError as e:
            logger.warning(f"Failed to delete s3://{self.bucket_name}/{path}: {e}")
            return False


# Factory function for creating storage backends
def create_storage(config: Dict[str, Any]) -> StorageBackend:
    """
    Create a storage backend from configuration.

    Args:
        config: Storage configuration dictionary (the ``storage`` section)

    Returns:
        Storage backend instance
    """
    storage_type = config.get('type', 'local')

    if storage_type == 'local':
        return LocalStorage(config.get('base_path', 'media'))
    elif storage_type == 's3':
        if not config.get('bucket'):
            raise ConfigurationError("storage.bucket is required for S3 storage")
        return S3Storage(
            bucket_name=config['bucket'],
            region=config.get('region', 'us-east-1'),
            access_key=config.get('access_key'),
            secret_key=config.get('secret_key'),
            url_expiry=config.get('presigned_url_expiry', 900)
        )
    else:
        raise ConfigurationError(f"Unknown storage type: {storage_type}")
