from datetime import datetime, timezone
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ApiResponse(BaseModel, Generic[T]):
    status: str = "success"
    message: str = "Operation completed successfully"
    data: Optional[T] = None
    timestamp: str = Field(default_factory=utc_timestamp)


class Page(CamelModel, Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int
    total_pages: int


def success_response(data=None, message: str = "Operation completed successfully") -> dict:
    return {
        "status": "success",
        "message": message,
        "data": data,
        "timestamp": utc_timestamp(),
    }


def error_body(message: str, **extra) -> dict:
    body = {"status": "error", "message": message}
    body.update(extra)
    body["timestamp"] = utc_timestamp()
    return body
