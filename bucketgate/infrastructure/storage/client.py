"""
Object storage adapters for customer buckets.

Every provider exposes the same capability set: signed PUT URLs, put,
get, list and delete. Two provider families are supported:

- S3: AWS S3, or anything that speaks the S3 wire protocol (MinIO, Ceph...)
  when an explicit endpoint is configured.
- R2: Cloudflare R2. It is the S3 adapter with the region defaulting to
  "auto"; every operation behaves exactly as it does for S3.

Signed URLs are computed locally by botocore and never touch the bucket.
The direct operations do network I/O; they run in a worker thread under a
bounded timeout and botocore's own retries are switched off, so a slow
bucket costs at most one timeout and the caller decides whether to retry.

Mock mode keeps objects in memory, enabling API testing without
provisioning actual object storage.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
from urllib.parse import quote

from ...core.errors import ObjectNotFound, StorageError
from ...core.uploads.models import (
    BucketCredentials,
    ObjectSummary,
    ProviderType,
    SignedPutUrl,
    StoredObject,
)

logger = logging.getLogger(__name__)

DEFAULT_SIGNED_URL_EXPIRY_SECONDS = 900
DEFAULT_OPERATION_TIMEOUT_SECONDS = 10.0

_MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass
class StorageConfig:
    """Connection settings for one bucket."""
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: Optional[str] = None
    region: Optional[str] = None
    operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS

    @classmethod
    def from_credentials(
        cls,
        credentials: BucketCredentials,
        operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
    ) -> "StorageConfig":
        return cls(
            access_key_id=credentials.access_key_id,
            secret_access_key=credentials.secret_access_key,
            bucket_name=credentials.bucket_name,
            endpoint_url=credentials.endpoint,
            region=credentials.region,
            operation_timeout_seconds=operation_timeout_seconds,
        )


class StorageAdapter(Protocol):
    """
    Protocol for bucket operations.

    Using a protocol means the upload broker doesn't care which provider
    sits behind a project, and tests can supply the in-memory adapter.
    """

    bucket_name: str

    async def get_signed_put_url(
        self,
        path: str,
        content_type: Optional[str] = None,
        expires_in_seconds: int = DEFAULT_SIGNED_URL_EXPIRY_SECONDS,
        metadata: Optional[dict[str, str]] = None,
    ) -> SignedPutUrl:
        """Pre-authorized upload URL. No I/O against the bucket."""
        ...

    async def get_signed_get_url(
        self,
        path: str,
        expires_in_seconds: int = DEFAULT_SIGNED_URL_EXPIRY_SECONDS,
    ) -> str:
        """Temporary download URL."""
        ...

    async def put_object(
        self,
        path: str,
        body: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        ...

    async def get_object(self, path: str) -> StoredObject:
        ...

    async def list_objects(self, prefix: str) -> list[ObjectSummary]:
        ...

    async def delete_object(self, path: str) -> None:
        ...


class S3StorageAdapter:
    """
    S3-compatible adapter backed by boto3.

    boto3 is synchronous, so network calls go through asyncio.to_thread
    and never block the event loop.
    """

    default_region = "us-east-1"

    def __init__(self, config: StorageConfig) -> None:
        """
        Build the boto3 client.

        boto3 is imported here, not at module level, because mock mode
        never needs it.
        """
        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for S3/R2 storage. Install with: pip install boto3"
            )

        self._config = config
        self.bucket_name = config.bucket_name
        self.region = config.region or self.default_region

        boto_config = Config(
            signature_version="s3v4",
            # Self-hosted S3 targets rarely support virtual-hosted buckets
            s3={"addressing_style": "path" if config.endpoint_url else "auto"},
            connect_timeout=config.operation_timeout_seconds,
            read_timeout=config.operation_timeout_seconds,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )

        self._s3_client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=self.region,
            config=boto_config,
        )

        logger.debug(
            "Initialized storage adapter",
            extra={
                "adapter": type(self).__name__,
                "bucket": config.bucket_name,
                "region": self.region,
                "endpoint": config.endpoint_url,
            },
        )

    async def _run(self, operation: str, func, **kwargs):
        """Run a blocking boto3 call off the event loop, bounded by the timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(functools.partial(func, **kwargs)),
                timeout=self._config.operation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Storage operation timed out",
                extra={
                    "operation": operation,
                    "bucket": self.bucket_name,
                    "timeout_seconds": self._config.operation_timeout_seconds,
                },
            )
            raise StorageError(f"{operation} timed out")

    async def get_signed_put_url(
        self,
        path: str,
        content_type: Optional[str] = None,
        expires_in_seconds: int = DEFAULT_SIGNED_URL_EXPIRY_SECONDS,
        metadata: Optional[dict[str, str]] = None,
    ) -> SignedPutUrl:
        """
        Generate a temporary upload URL.

        The URL only authorizes a PUT of this key until it expires; the
        client never sees the bucket credentials.
        """
        params = {"Bucket": self.bucket_name, "Key": path}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata

        try:
            url = self._s3_client.generate_presigned_url(
                "put_object",
                Params=params,
                ExpiresIn=expires_in_seconds,
                HttpMethod="PUT",
            )
        except Exception as e:
            logger.error(
                "Failed to generate signed PUT URL",
                extra={"storage_path": path, "error": str(e)},
            )
            raise StorageError(f"Signed URL generation failed: {e}")

        headers = {"content-type": content_type} if content_type else {}
        return SignedPutUrl(
            url=url,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds),
            headers=headers,
        )

    async def get_signed_get_url(
        self,
        path: str,
        expires_in_seconds: int = DEFAULT_SIGNED_URL_EXPIRY_SECONDS,
    ) -> str:
        try:
            return self._s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": path},
                ExpiresIn=expires_in_seconds,
            )
        except Exception as e:
            logger.error(
                "Failed to generate signed GET URL",
                extra={"storage_path": path, "error": str(e)},
            )
            raise StorageError(f"Signed URL generation failed: {e}")

    async def put_object(
        self,
        path: str,
        body: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        kwargs = {"Bucket": self.bucket_name, "Key": path, "Body": body}
        if content_type:
            kwargs["ContentType"] = content_type
        if metadata:
            kwargs["Metadata"] = metadata

        try:
            await self._run("put_object", self._s3_client.put_object, **kwargs)
        except StorageError:
            raise
        except Exception as e:
            logger.error(
                "Failed to upload object",
                extra={"storage_path": path, "error": str(e)},
            )
            raise StorageError(f"Upload failed: {e}")

        logger.debug(
            "Uploaded object",
            extra={"storage_path": path, "size_bytes": len(body)},
        )

    async def get_object(self, path: str) -> StoredObject:
        try:
            response = await self._run(
                "get_object",
                self._s3_client.get_object,
                Bucket=self.bucket_name,
                Key=path,
            )
            body = await self._run("read_body", response["Body"].read)
        except StorageError:
            raise
        except Exception as e:
            if _is_missing_object(e):
                raise ObjectNotFound(f"Object not found: {path}")
            logger.error(
                "Failed to download object",
                extra={"storage_path": path, "error": str(e)},
            )
            raise StorageError(f"Download failed: {e}")

        return StoredObject(
            key=path,
            body=body,
            content_type=response.get("ContentType"),
            content_length=int(response.get("ContentLength") or len(body)),
            metadata=response.get("Metadata") or {},
            etag=_strip_etag(response.get("ETag")),
        )

    async def list_objects(self, prefix: str) -> list[ObjectSummary]:
        try:
            response = await self._run(
                "list_objects",
                self._s3_client.list_objects_v2,
                Bucket=self.bucket_name,
                Prefix=prefix,
            )
        except StorageError:
            raise
        except Exception as e:
            logger.error(
                "Failed to list objects",
                extra={"prefix": prefix, "error": str(e)},
            )
            raise StorageError(f"List failed: {e}")

        return [
            ObjectSummary(
                key=obj["Key"],
                size=int(obj.get("Size", 0)),
                etag=_strip_etag(obj.get("ETag")),
                last_modified=obj.get("LastModified"),
            )
            for obj in response.get("Contents", [])
            if obj.get("Key")
        ]

    async def delete_object(self, path: str) -> None:
        try:
            await self._run(
                "delete_object",
                self._s3_client.delete_object,
                Bucket=self.bucket_name,
                Key=path,
            )
        except StorageError:
            raise
        except Exception as e:
            logger.error(
                "Failed to delete object",
                extra={"storage_path": path, "error": str(e)},
            )
            raise StorageError(f"Delete failed: {e}")

        logger.info("Deleted object", extra={"storage_path": path})


class R2StorageAdapter(S3StorageAdapter):
    """Cloudflare R2: the S3 adapter with an "auto" default region."""

    default_region = "auto"


def _is_missing_object(error: Exception) -> bool:
    response = getattr(error, "response", None) or {}
    code = str(response.get("Error", {}).get("Code", ""))
    return code in _MISSING_OBJECT_CODES


def _strip_etag(etag: Optional[str]) -> Optional[str]:
    return etag.strip('"') if etag else etag


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockStorageBackend:
    """
    In-memory object store shared by mock adapters.

    Buckets are keyed by name, so two adapters built for the same bucket
    see the same objects, just like two boto3 clients would.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, StoredObject]] = {}
        logger.info("Initialized mock storage backend (in-memory)")

    def bucket(self, bucket_name: str) -> dict[str, StoredObject]:
        return self._buckets.setdefault(bucket_name, {})

    def adapter_for(self, credentials: BucketCredentials) -> "MockStorageAdapter":
        return MockStorageAdapter(credentials.bucket_name, self)

    def clear(self) -> None:
        self._buckets.clear()


class MockStorageAdapter:
    """
    In-memory adapter for local development and tests.

    "Signed" URLs are mock:// URIs; a test plays the client's role by
    calling put_object directly.
    """

    def __init__(self, bucket_name: str, backend: Optional[MockStorageBackend] = None) -> None:
        self.bucket_name = bucket_name
        self._backend = backend or MockStorageBackend()

    @property
    def _objects(self) -> dict[str, StoredObject]:
        return self._backend.bucket(self.bucket_name)

    async def get_signed_put_url(
        self,
        path: str,
        content_type: Optional[str] = None,
        expires_in_seconds: int = DEFAULT_SIGNED_URL_EXPIRY_SECONDS,
        metadata: Optional[dict[str, str]] = None,
    ) -> SignedPutUrl:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds)
        return SignedPutUrl(
            url=f"mock://storage/{self.bucket_name}/{quote(path)}?expires={int(expires_at.timestamp())}",
            expires_at=expires_at,
            headers={"content-type": content_type} if content_type else {},
        )

    async def get_signed_get_url(
        self,
        path: str,
        expires_in_seconds: int = DEFAULT_SIGNED_URL_EXPIRY_SECONDS,
    ) -> str:
        if path not in self._objects:
            raise ObjectNotFound(f"Object not found: {path}")
        return f"mock://storage/{self.bucket_name}/{quote(path)}"

    async def put_object(
        self,
        path: str,
        body: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        self._objects[path] = StoredObject(
            key=path,
            body=body,
            content_type=content_type,
            content_length=len(body),
            metadata=dict(metadata or {}),
            etag=f"mock-{len(body)}",
        )
        logger.debug(
            "Stored object in mock storage",
            extra={"storage_path": path, "size_bytes": len(body)},
        )

    async def get_object(self, path: str) -> StoredObject:
        if path not in self._objects:
            raise ObjectNotFound(f"Object not found: {path}")
        return self._objects[path]

    async def list_objects(self, prefix: str) -> list[ObjectSummary]:
        return [
            ObjectSummary(key=key, size=obj.content_length, etag=obj.etag)
            for key, obj in sorted(self._objects.items())
            if key.startswith(prefix)
        ]

    async def delete_object(self, path: str) -> None:
        self._objects.pop(path, None)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_adapter(
    credentials: BucketCredentials,
    mock_mode: bool = False,
    operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
    mock_backend: Optional[MockStorageBackend] = None,
) -> StorageAdapter:
    """
    Pick the adapter variant for a bucket's stored provider type.

    Args:
        credentials: Decrypted bucket credentials
        mock_mode: If True, keep objects in memory instead of a real bucket
        operation_timeout_seconds: Upper bound for any single network call
        mock_backend: Shared in-memory store used in mock mode

    Returns:
        MockStorageAdapter in mock mode, R2StorageAdapter for r2 buckets,
        S3StorageAdapter otherwise
    """
    if mock_mode:
        return MockStorageAdapter(credentials.bucket_name, mock_backend)

    config = StorageConfig.from_credentials(credentials, operation_timeout_seconds)

    if credentials.provider_type is ProviderType.R2:
        return R2StorageAdapter(config)
    return S3StorageAdapter(config)
