import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    NoResultFound,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.exceptions import ApiError
from app.schemas.common import error_body

logger = logging.getLogger(__name__)

# Prefixes that are served; anything else is treated as a wrong API version
KNOWN_PREFIXES = ("/api/userWebhook", "/health", "/docs", "/openapi.json", "/redoc")


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode is not None:
        return pgcode == "23505"
    return "unique" in str(orig).lower()


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode is not None:
        return pgcode == "23503"
    return "foreign key" in str(orig).lower()


def _json(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(message, **extra))


async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return _json(exc.status_code, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    reason = first.get("msg", "Invalid request")
    message = f"{field}: {reason}" if field else reason
    details = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in errors
    ]
    return _json(400, message, errors=details)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    if _is_foreign_key_violation(exc):
        return _json(400, "Foreign key constraint failed")
    logger.info(f"Integrity error on {request.url.path}: {exc.orig}")
    if _is_unique_violation(exc):
        return _json(409, "Duplicate entry: email or oauthId already exists")
    return _json(409, "Database constraint violated")


async def no_result_handler(request: Request, exc: NoResultFound):
    return _json(404, "Record not found")


async def database_unavailable_handler(request: Request, exc: Exception):
    logger.error(f"Database unavailable during {request.method} {request.url.path}: {exc}")
    return _json(503, "Database connection failed")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        path = request.url.path
        if path != "/" and not path.startswith(settings.BASE_PATH) and not path.startswith(KNOWN_PREFIXES):
            return _json(
                400,
                f"Invalid API version. Use {settings.BASE_PATH}/*",
                currentVersion=settings.API_VERSION,
                pathAttempted=path,
            )
        if exc.detail in (None, "Not Found"):
            return _json(404, f"Resource not found: {request.method} {path}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}\n{traceback.format_exc()}"
    )
    extra = {}
    if settings.is_development:
        extra["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return _json(500, "Internal server error", **extra)


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(NoResultFound, no_result_handler)
    app.add_exception_handler(OperationalError, database_unavailable_handler)
    app.add_exception_handler(DisconnectionError, database_unavailable_handler)
    app.add_exception_handler(PoolTimeoutError, database_unavailable_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
