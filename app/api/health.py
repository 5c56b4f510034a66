import logging
import time

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from app.core import database
from app.core.config import settings
from app.core.exceptions import ServiceUnavailableError
from app.schemas.common import success_response, utc_timestamp

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])

STARTED_AT = time.monotonic()


@router.get("/health")
def health_check():
    try:
        database.check_connection()
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        raise ServiceUnavailableError("Service unavailable: Database connection failed")

    return success_response(
        {
            "uptime": round(time.monotonic() - STARTED_AT, 3),
            "database": "connected",
            "environment": settings.ENVIRONMENT,
            "timestamp": utc_timestamp(),
        },
        "Server is operational",
    )


@router.get("/")
def root():
    return {"status": "running"}
