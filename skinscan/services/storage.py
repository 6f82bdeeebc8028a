import io
import logging
import os
from asyncio import Lock
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import aioboto3
from aiobotocore.client import AioBaseClient
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from skinscan.config import Settings


logger = logging.getLogger("s3")  # Logger for S3 interactions


_settings: Settings | None = None

_client_ctx: AbstractAsyncContextManager[AioBaseClient] | None = None
_client: AioBaseClient | None = None
_client_lock: Lock = Lock()

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/heic": "heic",
}


class StorageError(Exception):
    """Raised when the image could not be stored."""


@dataclass
class UploadedImage:
    url: str
    key: str
    meta: dict[str, Any] = field(default_factory=dict)


def _setting(env: str, attr: str, default: Any = None) -> Any:
    return os.getenv(env, getattr(_settings, attr) if _settings is not None else default)


async def _make_client() -> AioBaseClient:
    session = aioboto3.Session()
    client_ctx = session.client(
        "s3",
        endpoint_url=_setting("S3_ENDPOINT", "s3_endpoint"),
        region_name=_setting("S3_REGION", "s3_region", "us-east-1"),
        aws_access_key_id=_setting("S3_ACCESS_KEY", "s3_access_key"),
        aws_secret_access_key=_setting("S3_SECRET_KEY", "s3_secret_key"),
    )
    try:
        client = await client_ctx.__aenter__()
    except Exception as exc:
        try:
            await client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client after failed entry")
        logger.exception("Failed to create S3 client: %s", exc)
        raise
    global _client_ctx
    _client_ctx = client_ctx
    return client


async def get_client() -> AioBaseClient:
    """Return a cached aioboto3 client, creating it if needed."""
    global _client
    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            _client = await _make_client()
        return _client


async def close_client() -> None:
    """Close the cached S3 client if it exists."""
    global _client, _client_ctx
    if _client_ctx is not None:
        try:
            await _client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client")
    _client = None
    _client_ctx = None


async def init_storage(cfg: Settings) -> None:
    """Store settings and reinitialize the client."""
    global _settings
    _settings = cfg
    await close_client()


def image_info(data: bytes) -> dict[str, Any]:
    """Width, height and format of the image, ``None`` where undecodable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return {
                "width": img.width,
                "height": img.height,
                "format": (img.format or "").lower() or None,
            }
    except (UnidentifiedImageError, OSError, ValueError):
        logger.warning("Could not read image dimensions (%d bytes)", len(data))
        return {"width": None, "height": None, "format": None}


async def upload_image(
    user_id: str, data: bytes, content_type: str | None = None
) -> UploadedImage:
    """Upload bytes to S3 and return the public URL with image metadata."""
    content_type = content_type or "image/jpeg"
    now = datetime.now(timezone.utc)
    folder = _setting("S3_FOLDER", "s3_folder", "skin-detections").strip("/")
    ext = _EXTENSIONS.get(content_type, "jpg")
    key = f"{folder}/{user_id}/{now:%Y%m%d%H%M%S}-{uuid4().hex}.{ext}"
    bucket = _setting("S3_BUCKET", "s3_bucket", "")
    try:
        client = await get_client()
    except Exception as exc:
        # e.g. botocore raises ValueError for a malformed S3_ENDPOINT
        raise StorageError(f"S3 client unavailable: {exc}") from exc
    try:
        resp = await client.put_object(
            Bucket=bucket, Key=key, Body=data, ContentType=content_type
        )
    except (BotoCoreError, ClientError) as exc:
        logger.exception("S3 upload failed for %s: %s", key, exc)
        raise StorageError(f"S3 upload failed: {exc}") from exc

    info = image_info(data)
    resp = resp or {}
    meta = {
        "width": info["width"],
        "height": info["height"],
        "bytes": len(data),
        "format": info["format"] or ext,
        "public_id": key,
        "version": resp.get("VersionId") or resp.get("ETag", "").strip('"') or None,
        "created_at": now.isoformat(),
    }
    logger.info("Uploaded image %s (%d bytes)", key, len(data))
    return UploadedImage(url=get_public_url(key), key=key, meta=meta)


def get_public_url(key: str) -> str:
    """Return a public URL for the object."""
    bucket = _setting("S3_BUCKET", "s3_bucket", "")
    base = _setting("S3_PUBLIC_URL", "s3_public_url")
    if base:
        return f"{base.rstrip('/')}/{key}"

    endpoint = _setting("S3_ENDPOINT", "s3_endpoint")
    if endpoint:
        return f"{endpoint.rstrip('/')}/{bucket}/{key}"

    region = _setting("S3_REGION", "s3_region", "us-east-1")
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


__all__ = [
    "StorageError",
    "UploadedImage",
    "close_client",
    "get_client",
    "get_public_url",
    "image_info",
    "init_storage",
    "upload_image",
]
