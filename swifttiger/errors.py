from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .logging import get_logger
from .services.routing.models import InsufficientData
from .services.workflow import WorkflowError


log = get_logger("swifttiger.errors")


def classify_status(status_code: Optional[int]) -> str:
    """Map an HTTP status to the error_type clients switch on."""
    if status_code is None:
        return "unknown"
    if status_code in (400, 422):
        return "validation"
    if status_code == 401:
        return "auth"
    if status_code == 403:
        return "permission"
    if status_code == 404:
        return "not_found"
    if status_code == 409:
        return "conflict"
    if status_code == 429:
        return "rate_limit"
    if status_code >= 500:
        return "server"
    return "unknown"


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    body = {"success": False, "message": message, "error_type": classify_status(status_code)}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        message = detail.get("message") or "Request failed"
        extra = {k: v for k, v in detail.items() if k != "message"}
    else:
        message = str(detail) if detail else "Request failed"
        extra = {}
    response = error_response(exc.status_code, message, **extra)
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "message": err.get("msg")})
    return error_response(400, "Validation failed", errors=errors)


async def insufficient_data_handler(request: Request, exc: InsufficientData):
    return error_response(400, str(exc) or "Not enough data to optimize a route")


async def workflow_error_handler(request: Request, exc: WorkflowError):
    return error_response(exc.status_code, exc.message)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, "Too many requests, please try again later")


async def unhandled_exception_handler(request: Request, exc: Exception):
    log.error("unhandled_exception", path=request.url.path, method=request.method, exc_info=exc)
    message = f"{type(exc).__name__}: {exc}" if settings.is_dev else "Internal server error"
    return error_response(500, message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InsufficientData, insufficient_data_handler)
    app.add_exception_handler(WorkflowError, workflow_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
