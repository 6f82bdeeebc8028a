from __future__ import annotations
import base64
import logging
import re

import boto3
import pytest
import pytest_asyncio
from botocore.exceptions import BotoCoreError

from moto import mock_aws

from skinscan.controllers import detections
from skinscan.services import storage
from skinscan.config import Settings
from skinscan.services.storage import StorageError, get_client, get_public_url, upload_image


ORIGINAL_MAKE_CLIENT = storage._make_client

PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mP8Xw8AAoMBgN4abH0AAAAASUVORK5CYII="
)
PNG_BYTES = base64.b64decode(PNG_BASE64)


class _AsyncWrapper:
    def __init__(self, client: boto3.client):
        self._client = client
        self.meta = client.meta

    async def put_object(self, *args, **kwargs):
        return self._client.put_object(*args, **kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._client.close()


@pytest.fixture(autouse=True)
def s3_env(monkeypatch):
    monkeypatch.setenv("S3_BUCKET", "testbucket")
    monkeypatch.setenv("S3_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.delenv("S3_ENDPOINT", raising=False)
    monkeypatch.delenv("S3_PUBLIC_URL", raising=False)
    monkeypatch.delenv("S3_FOLDER", raising=False)


@pytest_asyncio.fixture(autouse=True)
async def use_sync_client(monkeypatch):
    async def _make():
        ctx = _AsyncWrapper(boto3.client("s3", region_name="us-east-1"))
        storage._client_ctx = ctx
        return await ctx.__aenter__()

    monkeypatch.setattr(storage, "_make_client", _make)
    storage._client = None
    storage._client_ctx = None
    yield
    await storage.close_client()


@pytest.mark.asyncio
async def test_lazy_client_initialization():
    with mock_aws():
        await storage.init_storage(Settings(_env_file=None))
        assert storage._client is None
        first = await get_client()
        assert first is storage._client
        again = await get_client()
        assert again is first


@pytest.mark.asyncio
async def test_upload_returns_url_and_meta(monkeypatch):
    monkeypatch.setenv("S3_PUBLIC_URL", "http://localhost:9000")
    await storage.init_storage(Settings(_env_file=None))

    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="testbucket")

        uploaded = await upload_image("user-42", PNG_BYTES, "image/png")
        assert re.fullmatch(
            r"skin-detections/user-42/\d{14}-[0-9a-f]{32}\.png", uploaded.key
        )
        obj = s3.get_object(Bucket="testbucket", Key=uploaded.key)
        assert obj["Body"].read() == PNG_BYTES
        assert obj["ContentType"] == "image/png"

        assert uploaded.url == f"http://localhost:9000/{uploaded.key}"
        assert uploaded.meta["width"] == 1
        assert uploaded.meta["height"] == 1
        assert uploaded.meta["bytes"] == len(PNG_BYTES)
        assert uploaded.meta["format"] == "png"
        assert uploaded.meta["public_id"] == uploaded.key
        assert uploaded.meta["version"]
        assert uploaded.meta["created_at"]


@pytest.mark.asyncio
async def test_upload_of_undecodable_bytes_keeps_partial_meta():
    await storage.init_storage(Settings(_env_file=None))

    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="testbucket")

        uploaded = await upload_image("u1", b"not an image", "image/jpeg")
        assert uploaded.meta["width"] is None
        assert uploaded.meta["height"] is None
        assert uploaded.meta["format"] == "jpg"
        assert uploaded.meta["bytes"] == len(b"not an image")


@pytest.mark.asyncio
async def test_upload_failure():
    await storage.init_storage(Settings(_env_file=None))

    with mock_aws():
        # Intentionally do not create bucket to trigger error
        with pytest.raises(StorageError):
            await upload_image("u1", PNG_BYTES, "image/png")


def test_public_url_variants(monkeypatch):
    monkeypatch.setenv("S3_PUBLIC_URL", "https://cdn.example.com/")
    assert get_public_url("a/b.png") == "https://cdn.example.com/a/b.png"

    monkeypatch.delenv("S3_PUBLIC_URL")
    monkeypatch.setenv("S3_ENDPOINT", "http://minio:9000")
    assert get_public_url("a/b.png") == "http://minio:9000/testbucket/a/b.png"

    monkeypatch.delenv("S3_ENDPOINT")
    assert get_public_url("a/b.png") == "https://testbucket.s3.us-east-1.amazonaws.com/a/b.png"


def test_image_info_reads_dimensions():
    assert storage.image_info(PNG_BYTES) == {"width": 1, "height": 1, "format": "png"}


@pytest.mark.asyncio
async def test_make_client_logs_error(monkeypatch, caplog):
    class FailingCtx:
        async def __aenter__(self):
            raise BotoCoreError()

        async def __aexit__(self, exc_type, exc, tb):
            return False

    class FakeSession:
        def client(self, *args, **kwargs):
            return FailingCtx()

    monkeypatch.setattr(storage, "_make_client", ORIGINAL_MAKE_CLIENT)
    monkeypatch.setattr(storage.aioboto3, "Session", lambda: FakeSession())
    storage._client = None
    storage._client_ctx = None
    with caplog.at_level(logging.ERROR, logger="s3"):
        with pytest.raises(BotoCoreError):
            await storage._make_client()
    assert "Failed to create S3 client" in caplog.text


class DummyClient:
    def __init__(self):
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True


@pytest.mark.asyncio
async def test_close_client_closes():
    dummy = DummyClient()
    storage._client = await dummy.__aenter__()
    storage._client_ctx = dummy
    await storage.close_client()
    assert dummy.closed
    assert storage._client is None


class FailingClient:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_close_client_ignores_errors(caplog):
    failing = FailingClient()
    storage._client = await failing.__aenter__()
    storage._client_ctx = failing
    with caplog.at_level(logging.ERROR):
        await storage.close_client()
    assert "Failed to close S3 client" in caplog.text
    assert storage._client is None


@pytest.mark.asyncio
async def test_init_storage_closes_existing_client():
    dummy = DummyClient()
    storage._client = await dummy.__aenter__()
    storage._client_ctx = dummy
    await storage.init_storage(Settings(_env_file=None))
    assert dummy.closed
    assert storage._client is None


@pytest.mark.asyncio
async def test_client_creation_failure_becomes_storage_error(monkeypatch):
    async def bad_endpoint():
        raise ValueError("Invalid endpoint: not a url")

    monkeypatch.setattr(storage, "_make_client", bad_endpoint)
    await storage.init_storage(Settings(_env_file=None))
    with pytest.raises(StorageError) as exc:
        await upload_image("u1", PNG_BYTES, "image/png")
    assert "Invalid endpoint" in str(exc.value)
    assert storage._client is None


@pytest.mark.asyncio
async def test_invalid_endpoint_reaches_detection_error(monkeypatch):
    monkeypatch.setattr(storage, "_make_client", ORIGINAL_MAKE_CLIENT)
    monkeypatch.setenv("S3_ENDPOINT", "not a url")
    await storage.init_storage(Settings(_env_file=None))
    monkeypatch.setattr(detections, "upload_image", upload_image)
    before = detections.storage_errors_total._value.get()

    with pytest.raises(detections._DetectionError) as exc:
        await detections._process_detection(PNG_BYTES, "image/png", "u1", None)

    assert exc.value.response.status_code == 500
    assert b"Detection failed" in exc.value.response.body
    assert detections.storage_errors_total._value.get() == before + 1
