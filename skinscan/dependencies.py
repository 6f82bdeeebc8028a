from __future__ import annotations

import hmac
import logging

from fastapi import Header, HTTPException
from pydantic import BaseModel

from skinscan.config import Settings

settings = Settings()

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    status: bool = False
    msg: str
    error: str | None = None


async def require_user(
    x_api_key: str | None = Header(None, alias="X-API-Key"),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> str:
    """Authenticate the caller and return the opaque user id."""
    if x_api_ver is None:
        raise HTTPException(status_code=426, detail="Missing API version")

    if x_api_ver != "v1":
        raise HTTPException(status_code=426, detail="Invalid API version")

    if not x_api_key or not hmac.compare_digest(
        x_api_key.encode(), settings.api_key.encode()
    ):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user ID")

    return user_id
