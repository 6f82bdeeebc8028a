import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from skinscan.dependencies import ErrorResponse

logger = logging.getLogger(__name__)


def error_response(status_code: int, msg: str, error: str | None = None) -> JSONResponse:
    body = ErrorResponse(msg=msg, error=error).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


async def http_exception_handler(request: Request, exc: HTTPException):
    """Render HTTP exceptions in the uniform error shape."""
    logger.warning(
        "HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail
    )
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    response = error_response(exc.status_code, detail)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Missing headers or malformed parameters."""
    message = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', '')}"
        for e in exc.errors()
    )
    logger.warning("Invalid request on %s: %s", request.url.path, message)
    return error_response(400, "Invalid request", message)


async def generic_exception_handler(request: Request, exc: Exception):
    """Last resort: keep the process alive and report a 500."""
    logger.exception(
        "Unhandled exception on %s: %s", request.url.path, type(exc).__name__
    )
    return error_response(500, "Internal Server Error", str(exc) or type(exc).__name__)
