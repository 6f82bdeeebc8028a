from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException
import uvicorn

from skinscan import __version__
from skinscan.config import Settings
from skinscan.controllers import v1
from skinscan.db import close_db, init_db
from skinscan.exceptions import (
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from skinscan.logger import setup_logging
from skinscan.services.gpt import init_gpt
from skinscan.services.storage import close_client, init_storage

settings = Settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    missing = settings.missing_credentials()
    if missing:
        logger.warning(
            "Missing settings, detection requests will fail: %s", ", ".join(missing)
        )
    init_gpt(settings)
    await init_storage(settings)
    await asyncio.to_thread(init_db, settings)
    yield
    await close_client()
    await asyncio.to_thread(close_db)


app = FastAPI(
    title="Skin Lesion Screening API",
    version=__version__,
    lifespan=lifespan,
)

app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(v1.router)


@app.get("/health")
async def health_check():
    return {"status": True, "service": "skinscan"}


Instrumentator().instrument(app).expose(app)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port)
