import os
from urllib.parse import quote_plus

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value, default=False):
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_list(value):
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    # DATABASE
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "bearister")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")
    # Full URL wins over the DB_* parts (sqlite in tests, managed PG in prod)
    DATABASE_URL_OVERRIDE = os.getenv("DATABASE_URL")

    # RUNTIME
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = int(os.getenv("PORT", "3000"))
    CORS_ORIGINS = _as_list(os.getenv("CORS_ORIGINS", "http://localhost:3000"))

    # CLERK
    USER_WEBHOOK_SECRET = os.getenv("USER_WEBHOOK_SECRET") or os.getenv("WEBHOOK_SECRET")
    CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL")
    CLERK_ISSUER = os.getenv("CLERK_ISSUER")
    CLERK_AUTHORIZED_PARTIES = _as_list(os.getenv("CLERK_AUTHORIZED_PARTIES"))
    CLERK_AUTH_REQUIRED = _as_bool(os.getenv("CLERK_AUTH_REQUIRED"), default=True)
    JWKS_CACHE_TTL = int(os.getenv("JWKS_CACHE_TTL", "3600"))

    # SCHEDULER
    SCHEDULER_ENABLED = _as_bool(os.getenv("SCHEDULER_ENABLED"), default=True)
    SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "UTC")
    MONTHLY_RESET_CRON = "0 0 1 * *"
    DAILY_EXPIRY_CRON = "0 0 * * *"
    EXPIRY_WARNING_DAYS = 3

    # API
    API_VERSION = "v1"
    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        password = quote_plus(self.DB_PASSWORD or "")
        return f"postgresql://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def BASE_PATH(self) -> str:
        return f"/api/{self.API_VERSION}"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


settings = Settings()
