# storefront/services/object_storage.py
"""
S3-compatible object storage for product images.

The minio client is synchronous, so calls run in a worker thread to keep
the event loop free. A single PutObject is atomic on the server side: the
object either exists in full under its key or not at all.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, Optional, Protocol

from minio import Minio
from minio.error import MinioException
from urllib3.exceptions import HTTPError as TransportError

from storefront.core.service_base import BaseService, ServiceConfig
from storefront.core.exceptions import ObjectStorageError, ConfigurationError

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    async def put(
        self,
        key: str,
        data: BinaryIO,
        length: int,
        metadata: Dict[str, str],
        content_type: Optional[str] = None
    ) -> str:
        ...


@dataclass
class S3Config(ServiceConfig):
    """Configuration for the object storage service"""
    bucket: str = "nodejs-shop"
    region: str = "us-west-2"
    endpoint: str = "s3.amazonaws.com"
    secure: bool = True
    acl: Optional[str] = "public-read"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None


class ObjectStorageService(BaseService[S3Config]):
    """Write-only S3 client used by the upload gate"""

    def __init__(self, config: Optional[S3Config] = None):
        super().__init__(config or S3Config(), logging.getLogger(__name__))

    def _validate_config(self) -> None:
        super()._validate_config()
        if not self.config.bucket:
            raise ConfigurationError("No S3 bucket configured", component=self.service_name)

    async def _initialize_client(self) -> Minio:
        if not self.config.access_key_id:
            self.logger.warning("⚠️ No S3 credentials configured - uploads will be anonymous")

        return Minio(
            self.config.endpoint,
            access_key=self.config.access_key_id,
            secret_key=self.config.secret_access_key,
            secure=self.config.secure,
            region=self.config.region,
        )

    def location_for(self, key: str) -> str:
        scheme = "https" if self.config.secure else "http"
        return f"{scheme}://{self.config.endpoint}/{self.config.bucket}/{key}"

    async def put(
        self,
        key: str,
        data: BinaryIO,
        length: int,
        metadata: Dict[str, str],
        content_type: Optional[str] = None
    ) -> str:
        """
        Store one object.

        Args:
            key: Object key inside the bucket
            data: Readable stream positioned at the start of the object
            length: Number of bytes to read from data
            metadata: User metadata stored with the object
            content_type: MIME type served back to browsers

        Returns:
            Public location of the stored object

        Raises:
            ObjectStorageError: If the object could not be written
        """
        headers: Dict[str, str] = dict(metadata)
        if self.config.acl:
            # x-amz-* keys are sent as request headers, not user metadata
            headers["x-amz-acl"] = self.config.acl

        client = self.client
        try:
            await asyncio.to_thread(
                client.put_object,
                bucket_name=self.config.bucket,
                object_name=key,
                data=data,
                length=length,
                content_type=content_type or "application/octet-stream",
                metadata=headers,
            )
        except (MinioException, TransportError) as e:
            raise ObjectStorageError(
                f"Failed to store object: {type(e).__name__}",
                key=key,
                bucket=self.config.bucket,
                details={'original_error': str(e)}
            ) from e

        self.logger.info(f"📦 Stored {length} bytes as {key}")
        return self.location_for(key)

    async def health_check(self) -> Dict[str, Any]:
        if not self._initialized:
            return {"healthy": False, "status": "not_connected", "details": {"bucket": self.config.bucket}}

        try:
            exists = await asyncio.to_thread(self._client.bucket_exists, self.config.bucket)
        except (MinioException, TransportError) as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {"bucket": self.config.bucket, "error": type(e).__name__}
            }

        return {
            "healthy": bool(exists),
            "status": "connected" if exists else "missing_bucket",
            "details": {"bucket": self.config.bucket}
        }
