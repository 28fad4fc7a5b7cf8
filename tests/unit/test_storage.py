"""
Unit tests for the storage adapters.

Signed URLs are computed locally by botocore, so the S3/R2 tests run with
fake credentials and no network. Direct operations are exercised against
a stand-in for the boto3 client.
"""

import time
from urllib.parse import parse_qs, urlparse

import pytest
from botocore.exceptions import ClientError

from bucketgate.core.errors import ObjectNotFound, StorageError
from bucketgate.core.uploads import ProviderType
from bucketgate.core.uploads.models import BucketCredentials
from bucketgate.infrastructure.storage import (
    MockStorageAdapter,
    MockStorageBackend,
    R2StorageAdapter,
    S3StorageAdapter,
    StorageConfig,
    create_storage_adapter,
)


def make_config(**overrides):
    values = {
        "access_key_id": "AKIAEXAMPLE",
        "secret_access_key": "secret-example",
        "bucket_name": "customer-bucket",
    }
    values.update(overrides)
    return StorageConfig(**values)


def make_credentials(provider=ProviderType.S3, **overrides):
    values = {
        "provider_type": provider,
        "bucket_name": "customer-bucket",
        "access_key_id": "AKIAEXAMPLE",
        "secret_access_key": "secret-example",
    }
    values.update(overrides)
    return BucketCredentials(**values)


class FakeS3Client:
    """Just enough of the boto3 client for the direct operations."""

    def __init__(self, contents=None, delay=0.0):
        self.contents = contents or []
        self.delay = delay

    def list_objects_v2(self, Bucket, Prefix):
        time.sleep(self.delay)
        return {"Contents": [o for o in self.contents if o["Key"].startswith(Prefix)]}

    def get_object(self, Bucket, Key):
        raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")

    def delete_object(self, Bucket, Key):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "DeleteObject")


# ---------------------------------------------------------------------------
# Signed URLs
# ---------------------------------------------------------------------------

class TestSignedUrls:

    @pytest.mark.asyncio
    async def test_s3_signed_put_url(self):
        adapter = S3StorageAdapter(make_config())

        signed = await adapter.get_signed_put_url(
            "acme/web/site/avatar.png", content_type="image/png", expires_in_seconds=600
        )

        parsed = urlparse(signed.url)
        query = parse_qs(parsed.query)
        assert "acme/web/site/avatar.png" in parsed.path
        assert query["X-Amz-Expires"] == ["600"]
        assert query["X-Amz-Algorithm"] == ["AWS4-HMAC-SHA256"]
        assert "X-Amz-Signature" in query
        assert "/us-east-1/s3/aws4_request" in query["X-Amz-Credential"][0]
        assert signed.method == "PUT"
        assert signed.headers == {"content-type": "image/png"}

    @pytest.mark.asyncio
    async def test_custom_endpoint_uses_path_style(self):
        adapter = S3StorageAdapter(make_config(endpoint_url="https://minio.internal:9000"))

        signed = await adapter.get_signed_put_url("a/b.txt")

        assert signed.url.startswith("https://minio.internal:9000/customer-bucket/a/b.txt?")

    @pytest.mark.asyncio
    async def test_r2_defaults_region_to_auto(self):
        adapter = R2StorageAdapter(make_config(
            endpoint_url="https://account.r2.cloudflarestorage.com"
        ))

        signed = await adapter.get_signed_put_url("a/b.txt")

        assert adapter.region == "auto"
        query = parse_qs(urlparse(signed.url).query)
        assert "/auto/s3/aws4_request" in query["X-Amz-Credential"][0]

    def test_explicit_region_wins(self):
        assert S3StorageAdapter(make_config(region="eu-west-1")).region == "eu-west-1"
        assert R2StorageAdapter(make_config(region="wnam")).region == "wnam"

    @pytest.mark.asyncio
    async def test_signed_get_url(self):
        adapter = S3StorageAdapter(make_config())
        url = await adapter.get_signed_get_url("a/b.txt", expires_in_seconds=60)
        assert "X-Amz-Expires=60" in url


# ---------------------------------------------------------------------------
# Direct operations
# ---------------------------------------------------------------------------

class TestDirectOperations:

    @pytest.mark.asyncio
    async def test_list_objects_strips_etag_quotes(self):
        adapter = S3StorageAdapter(make_config())
        adapter._s3_client = FakeS3Client(contents=[
            {"Key": "p/a.txt", "Size": 5, "ETag": '"abc123"'},
            {"Key": "q/b.txt", "Size": 7, "ETag": '"def"'},
        ])

        listing = await adapter.list_objects("p/")

        assert [(o.key, o.size, o.etag) for o in listing] == [("p/a.txt", 5, "abc123")]

    @pytest.mark.asyncio
    async def test_missing_key_is_object_not_found(self):
        adapter = S3StorageAdapter(make_config())
        adapter._s3_client = FakeS3Client()

        with pytest.raises(ObjectNotFound):
            await adapter.get_object("p/missing.txt")

    @pytest.mark.asyncio
    async def test_other_client_errors_are_storage_errors(self):
        adapter = S3StorageAdapter(make_config())
        adapter._s3_client = FakeS3Client()

        with pytest.raises(StorageError, match="Delete failed"):
            await adapter.delete_object("p/a.txt")

    @pytest.mark.asyncio
    async def test_slow_operation_times_out(self):
        adapter = S3StorageAdapter(make_config(operation_timeout_seconds=0.05))
        adapter._s3_client = FakeS3Client(delay=0.5)

        with pytest.raises(StorageError, match="timed out"):
            await adapter.list_objects("p/")


# ---------------------------------------------------------------------------
# Factory and mock adapter
# ---------------------------------------------------------------------------

class TestFactory:

    def test_picks_adapter_by_provider(self):
        assert type(create_storage_adapter(make_credentials(ProviderType.S3))) is S3StorageAdapter
        assert type(create_storage_adapter(make_credentials(ProviderType.R2))) is R2StorageAdapter

    def test_mock_mode(self):
        backend = MockStorageBackend()
        adapter = create_storage_adapter(make_credentials(), mock_mode=True, mock_backend=backend)
        assert isinstance(adapter, MockStorageAdapter)

    def test_credentials_repr_hides_secrets(self):
        text = repr(make_credentials())
        assert "AKIAEXAMPLE" not in text
        assert "secret-example" not in text


class TestMockAdapter:

    @pytest.mark.asyncio
    async def test_put_get_list_delete(self):
        adapter = MockStorageAdapter("bucket")

        await adapter.put_object("p/a.txt", b"hello", content_type="text/plain")
        stored = await adapter.get_object("p/a.txt")
        listing = await adapter.list_objects("p/")
        await adapter.delete_object("p/a.txt")

        assert stored.body == b"hello"
        assert stored.content_type == "text/plain"
        assert [(o.key, o.size) for o in listing] == [("p/a.txt", 5)]
        assert await adapter.list_objects("p/") == []

    @pytest.mark.asyncio
    async def test_missing_object(self):
        with pytest.raises(ObjectNotFound):
            await MockStorageAdapter("bucket").get_object("nope")

    @pytest.mark.asyncio
    async def test_adapters_share_a_backend(self):
        backend = MockStorageBackend()
        writer = backend.adapter_for(make_credentials())
        reader = backend.adapter_for(make_credentials())

        await writer.put_object("k", b"data")

        assert (await reader.get_object("k")).body == b"data"
        assert await MockStorageAdapter("other-bucket", backend).list_objects("") == []
