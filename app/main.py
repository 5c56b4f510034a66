import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.database import Base, check_connection, engine
from app.core.errors import register_exception_handlers
from app.core.logging import request_logger, setup_logging
from app.scheduler import start_scheduler, stop_scheduler
from app.api import health, users
from app.webhooks import clerk_user_webhook

from app.models import *

load_dotenv()
setup_logging()

logger = logging.getLogger(__name__)


# -------------------------
# Lifecycle: DB + scheduler are acquired here and released on shutdown
# -------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    check_connection()
    logger.info("Successfully connected to the database")
    Base.metadata.create_all(bind=engine)

    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()
        engine.dispose()
        logger.info("Database connections closed")


app = FastAPI(title="Bearister Accounts API", lifespan=lifespan)

# -------------------------
# CORS
# -------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)
app.middleware("http")(request_logger)

register_exception_handlers(app)

# -------------------------
# Include Routers
# -------------------------
app.include_router(health.router)
app.include_router(clerk_user_webhook.router)
app.include_router(users.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT)
