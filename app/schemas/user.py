import re
from datetime import datetime
from typing import Optional, Union

from pydantic import ConfigDict, Field, field_validator, model_validator

from app.core.plans import PlanType, ResourceKind, SubscriptionStatus
from app.schemas.common import CamelModel

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: str) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value) is not None


def _check_email(value):
    if value is not None and not is_valid_email(value):
        raise ValueError("Invalid email format")
    return value


# ---------------------------------------------------------
# REQUESTS
# ---------------------------------------------------------
class UserCreate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    oauth_id: str = Field(min_length=1)
    username: Optional[str] = None
    plan_type: PlanType = PlanType.BASIC

    @field_validator("email")
    @classmethod
    def validate_email(cls, value):
        return _check_email(value)


class CounterDelta(CamelModel):
    """``{"increment": n}`` or ``{"decrement": n}`` applied in SQL."""

    model_config = ConfigDict(extra="forbid")

    increment: Optional[int] = Field(default=None, ge=0)
    decrement: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_single_operation(self):
        if (self.increment is None) == (self.decrement is None):
            raise ValueError("Provide exactly one of increment or decrement")
        return self

    @property
    def delta(self) -> int:
        return self.increment if self.increment is not None else -self.decrement


UsageValue = Union[CounterDelta, int]


class UserUpdate(CamelModel):
    # Allow-list: anything not named here is rejected
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = None
    username: Optional[str] = None
    plan_type: Optional[PlanType] = None
    subscription_status: Optional[SubscriptionStatus] = None
    messages_used: Optional[UsageValue] = None
    documents_used: Optional[UsageValue] = None
    message_left: Optional[UsageValue] = None
    document_left: Optional[UsageValue] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value):
        return _check_email(value)

    @field_validator(
        "email",
        "plan_type",
        "subscription_status",
        "messages_used",
        "documents_used",
        "message_left",
        "document_left",
    )
    @classmethod
    def reject_null(cls, value):
        # Omit a field to leave it unchanged; null is never a valid value here
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @field_validator("messages_used", "documents_used", "message_left", "document_left")
    @classmethod
    def validate_counters(cls, value):
        if isinstance(value, int) and value < 0:
            raise ValueError("Usage counters cannot be negative")
        return value


class SubscriptionUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    plan_type: PlanType
    subscription_status: SubscriptionStatus
    duration_months: int = Field(default=1, ge=1, le=120)


class UsageConsume(CamelModel):
    model_config = ConfigDict(extra="forbid")

    type: ResourceKind
    amount: int = Field(default=1, ge=1)


# ---------------------------------------------------------
# RESPONSES
# ---------------------------------------------------------
class UserOut(CamelModel):
    id: str
    oauth_id: str
    email: str
    username: Optional[str] = None
    plan_type: PlanType
    subscription_status: SubscriptionStatus
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    messages_used: int
    documents_used: int
    message_left: Optional[int] = None  # null = unlimited
    document_left: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class ResourceUsage(CamelModel):
    used: int
    remaining: Union[int, str]  # "unlimited"
    total: Union[int, str]


class UsageBreakdown(CamelModel):
    messages: ResourceUsage
    documents: ResourceUsage


class SubscriptionSummary(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    days_remaining: Optional[int] = None


class UserStats(CamelModel):
    user_id: str
    plan_type: PlanType
    subscription_status: SubscriptionStatus
    usage: UsageBreakdown
    subscription: SubscriptionSummary
