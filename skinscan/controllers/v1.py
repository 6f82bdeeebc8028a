from fastapi import APIRouter

from . import detections

router = APIRouter(prefix="/v1")
router.include_router(detections.router)
