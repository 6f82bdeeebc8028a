from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from starlette.datastructures import UploadFile as StarletteUploadFile

from skinscan import db as db_module
from skinscan.config import Settings
from skinscan.dependencies import ErrorResponse, require_user
from skinscan.exceptions import error_response
from skinscan.metrics import (
    detect_latency_seconds,
    detect_requests_total,
    gpt_timeout_total,
    parse_failures_total,
    storage_errors_total,
)
from skinscan.models import Detection
from skinscan.services.detection import build_detection
from skinscan.services.extract import extract_json
from skinscan.services.gpt import Completion, call_gpt_vision
from skinscan.services.stats import compute_dashboard_stats
from skinscan.services.storage import StorageError, UploadedImage, upload_image

settings = Settings()
logger = logging.getLogger(__name__)

OPTIONAL_FILE = File(None)
IMAGE_FIELD = "image"

router = APIRouter(prefix="/detect", tags=["detections"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        protected_namespaces=(),
    )


class DetectionOut(_CamelModel):
    id: int
    user_id: str
    image_url: str
    image_meta: dict[str, Any] | None = None
    description: str = ""
    model_name: str = ""
    completion_id: str = ""
    result: dict[str, Any] | None = None
    condition: str = ""
    confidence: float | None = None
    advice: str = ""
    urgency: str = ""
    medications: dict[str, Any] | None = None
    raw: str
    created_at: datetime


class DetectResponse(_CamelModel):
    status: bool = True
    id: int
    user_id: str
    image_url: str
    result: dict[str, Any] | None = None
    condition: str = ""
    confidence: float | None = None
    advice: str = ""
    urgency: str = ""
    medications: dict[str, Any] | None = None
    model: str = ""
    completion_id: str = ""
    raw: str = ""


class ActivityResponse(_CamelModel):
    status: bool = True
    msg: str = "All user activity"
    data: list[DetectionOut]


class MonthlyScans(_CamelModel):
    month: str
    year: int
    scans: int


class ConditionCount(_CamelModel):
    name: str
    value: int


class DashboardStats(_CamelModel):
    total_scans: int
    detected_conditions: int
    accuracy_rate: str
    monthly_scans: list[MonthlyScans]
    conditions_overview: list[ConditionCount]


class StatsResponse(_CamelModel):
    status: bool = True
    stats: DashboardStats


class _DetectionError(Exception):
    def __init__(self, response: JSONResponse):
        self.response = response


async def _process_detection(
    contents: bytes,
    content_type: str | None,
    user_id: str,
    description: str | None,
) -> tuple[UploadedImage, Completion, dict | None]:
    """Upload the image, ask the model and parse its answer."""

    try:
        upload = await upload_image(user_id, contents, content_type)
    except StorageError as exc:
        storage_errors_total.inc()
        logger.exception("Image upload failed", extra={"user_id": user_id})
        raise _DetectionError(
            error_response(500, "Detection failed", str(exc))
        ) from exc

    try:
        completion = await asyncio.to_thread(call_gpt_vision, upload.url, description)
    except TimeoutError as exc:
        gpt_timeout_total.inc()
        logger.exception("GPT timeout", extra={"image_key": upload.key})
        raise _DetectionError(
            error_response(500, "Detection failed", str(exc) or "GPT timeout")
        ) from exc
    except Exception as exc:
        logger.exception("GPT error", extra={"image_key": upload.key})
        raise _DetectionError(
            error_response(500, "Detection failed", str(exc) or type(exc).__name__)
        ) from exc

    parsed = extract_json(completion.content)
    if not isinstance(parsed, dict):
        parse_failures_total.inc()
        logger.warning(
            "No structured result in completion %s, storing raw text only",
            completion.id or "<no id>",
            extra={"user_id": user_id, "completion_id": completion.id},
        )
        parsed = None
    return upload, completion, parsed


def _stray_upload_field(form) -> str | None:
    for key, value in form.multi_items():
        if key != IMAGE_FIELD and isinstance(value, StarletteUploadFile):
            return key
    return None


@router.post(
    "/skin-detection",
    response_model=DetectResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def detect_skin(
    request: Request,
    user_id: str = Depends(require_user),
    image: UploadFile | None = OPTIONAL_FILE,
    description: str | None = Form(None),
):
    missing = settings.missing_credentials()
    if missing:
        logger.error("Detection unavailable, missing settings: %s", ", ".join(missing))
        return error_response(500, f"{', '.join(missing)} not set in environment")

    if image is None:
        stray = _stray_upload_field(await request.form())
        if stray:
            return error_response(
                400,
                "Unexpected field name. Please use 'image' as the key for your file upload.",
                stray,
            )
        return error_response(400, "No image uploaded. Use form-data with field 'image'")

    try:
        if image.content_type and not image.content_type.startswith("image/"):
            logger.warning("Rejected upload with content type %s", image.content_type)
            return error_response(400, "Only image uploads are supported")

        limit = settings.upload_max_bytes
        contents = await image.read(limit + 1)
        if len(contents) > limit:
            return error_response(413, "Image too large")
        if not contents:
            return error_response(400, "Uploaded image is empty")

        detect_requests_total.inc()
        start_time = time.perf_counter()
        try:
            upload, completion, parsed = await _process_detection(
                contents, image.content_type, user_id, description
            )
        except _DetectionError as err:
            detect_latency_seconds.observe(time.perf_counter() - start_time)
            return err.response
    finally:
        await image.close()

    record = build_detection(
        user_id=user_id,
        image_url=upload.url,
        image_meta=upload.meta or None,
        description=description,
        model_name=completion.model,
        completion_id=completion.id,
        raw=completion.content,
        result=parsed,
        levels=settings.confidence_levels,
    )

    def _save() -> int:
        with db_module.SessionLocal() as db:
            db.add(record)
            db.commit()
            return record.id

    try:
        record_id = await asyncio.to_thread(_save)
    except SQLAlchemyError as exc:
        logger.exception(
            "Failed to store detection for %s", upload.key, extra={"user_id": user_id}
        )
        return error_response(500, "Detection failed", str(exc))
    finally:
        detect_latency_seconds.observe(time.perf_counter() - start_time)

    logger.info(
        "Stored detection %s for user %s (condition=%r)",
        record_id,
        user_id,
        record.condition,
        extra={"detection_id": record_id, "image_key": upload.key},
    )
    return DetectResponse(
        id=record_id,
        user_id=user_id,
        image_url=record.image_url,
        result=record.result,
        condition=record.condition,
        confidence=record.confidence,
        advice=record.advice,
        urgency=record.urgency,
        medications=record.medications,
        model=record.model_name,
        completion_id=record.completion_id,
        raw=record.raw,
    )


@router.get(
    "/users-activity",
    response_model=ActivityResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def users_activity(
    user_id: str = Depends(require_user),
    limit: int | None = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    def _db_call() -> list[DetectionOut]:
        with db_module.SessionLocal() as db:
            q = (
                db.query(Detection)
                .filter(Detection.user_id == user_id)
                .order_by(Detection.created_at.desc(), Detection.id.desc())
            )
            if offset:
                q = q.offset(offset)
            if limit is not None:
                q = q.limit(limit)
            return [DetectionOut.model_validate(r) for r in q.all()]

    try:
        items = await asyncio.to_thread(_db_call)
    except SQLAlchemyError as exc:
        logger.exception("Failed to load activity for %s", user_id)
        return error_response(500, "Failed to fetch user activity", str(exc))
    return ActivityResponse(data=items)


@router.get(
    "/dashboard-stats",
    response_model=StatsResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def dashboard_stats(user_id: str = Depends(require_user)):
    def _fetch() -> dict[str, Any]:
        with db_module.SessionLocal() as db:
            return compute_dashboard_stats(
                db, user_id, window=settings.stats_monthly_window
            )

    try:
        stats = await asyncio.to_thread(_fetch)
    except SQLAlchemyError as exc:
        logger.exception("Dashboard stats error")
        return error_response(500, "Failed to fetch dashboard stats", str(exc))
    return StatsResponse(stats=DashboardStats.model_validate(stats))
