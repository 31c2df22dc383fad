"""Avatar blob storage on S3-compatible object storage (MinIO / S3 / GCS interop)."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Protocol

import urllib3
from minio import Minio
from minio.error import MinioException, S3Error

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

# S3 error codes that mean the object is already gone.
_MISSING_OBJECT_CODES = frozenset({"NoSuchKey", "NoSuchObject"})


class BlobStoreError(Exception):
    """Raised when the object store rejects or fails a put/delete."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store data under key and return its public URL."""
        ...

    def delete_by_url(self, url: str) -> None:
        """Delete the object behind url; missing objects are not an error."""
        ...


class S3BlobStore:
    """Public-read bucket addressed by <public base>/<key> URLs."""

    def __init__(
        self,
        client: Minio,
        bucket: str,
        public_base_url: str,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> S3BlobStore:
        timeout = settings.BLOB_REQUEST_TIMEOUT_SEC
        http_client = urllib3.PoolManager(
            timeout=urllib3.Timeout(connect=timeout, read=timeout),
            retries=urllib3.Retry(total=2, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504]),
        )
        access_key = settings.BLOB_ACCESS_KEY.get_secret_value() if settings.BLOB_ACCESS_KEY else None
        secret_key = settings.BLOB_SECRET_KEY.get_secret_value() if settings.BLOB_SECRET_KEY else None
        client = Minio(
            settings.BLOB_ENDPOINT,
            access_key=access_key,
            secret_key=secret_key,
            secure=settings.BLOB_SECURE,
            http_client=http_client,
        )
        scheme = "https" if settings.BLOB_SECURE else "http"
        public_base = settings.BLOB_PUBLIC_BASE_URL or f"{scheme}://{settings.BLOB_ENDPOINT}/{settings.BLOB_BUCKET}"
        return cls(client, settings.BLOB_BUCKET, public_base)

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def key_for(self, url: str) -> str | None:
        """Object key for a URL produced by this store, or None for foreign URLs."""
        prefix = f"{self.public_base_url}/"
        if not url or not url.startswith(prefix):
            return None
        return url[len(prefix):] or None

    def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self._client.put_object(
                bucket_name=self.bucket,
                object_name=key,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise BlobStoreError(f"Failed to store object {key}", e) from e
        return self.url_for(key)

    def delete_by_url(self, url: str) -> None:
        key = self.key_for(url)
        if key is None:
            logger.warning("Not deleting blob outside bucket %s: %s", self.bucket, url)
            return
        try:
            self._client.remove_object(bucket_name=self.bucket, object_name=key)
        except S3Error as e:
            if e.code in _MISSING_OBJECT_CODES:
                return
            raise BlobStoreError(f"Failed to delete object {key}", e) from e
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise BlobStoreError(f"Failed to delete object {key}", e) from e
