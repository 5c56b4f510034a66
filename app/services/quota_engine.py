"""
Quota and subscription rules.

Every state transition a user's plan, subscription and usage counters can go
through lives here, whether it's triggered by an API call, a Clerk webhook or one
of the reconciliation jobs. Counters are only ever touched in SQL expressions or
on a row held with ``FOR UPDATE``, so concurrent requests can't both spend the
same remaining quota.
"""

import calendar
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, or_, update
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, QuotaExceededError
from app.core.plans import (
    FREE_PLAN,
    PlanType,
    ResourceKind,
    SubscriptionStatus,
    is_paid,
    limits_for,
)
from app.models.user import User, utcnow
from app.schemas.user import CounterDelta, UserUpdate

logger = logging.getLogger(__name__)

UNLIMITED = "unlimited"

# (used column, left column) per consumable resource
_COUNTERS = {
    ResourceKind.MESSAGE: ("messages_used", "message_left"),
    ResourceKind.DOCUMENT: ("documents_used", "document_left"),
}


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar-month arithmetic; the day is clamped to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def reset_usage(user: User, plan: PlanType) -> User:
    limits = limits_for(plan)
    user.message_left = limits.messages
    user.document_left = limits.documents
    user.messages_used = 0
    user.documents_used = 0
    return user


def start_subscription(user: User, now: datetime, months: int = 1) -> User:
    user.subscription_start_date = now
    user.subscription_end_date = add_months(now, months)
    return user


def clear_subscription_dates(user: User) -> User:
    user.subscription_start_date = None
    user.subscription_end_date = None
    return user


def change_plan(user: User, new_plan: PlanType, now: Optional[datetime] = None) -> bool:
    """Moves ``user`` onto ``new_plan``. Returns False when nothing changed."""
    new_plan = PlanType(new_plan)
    if user.plan_type == new_plan:
        return False

    now = now or utcnow()
    previous = user.plan_type
    user.plan_type = new_plan
    reset_usage(user, new_plan)

    if is_paid(new_plan):
        user.subscription_status = SubscriptionStatus.ACTIVE
        start_subscription(user, now)
    else:
        user.subscription_status = SubscriptionStatus.CANCELED
        clear_subscription_dates(user)

    logger.info(f"Plan change for user {user.id}: {previous} -> {new_plan}")
    return True


def set_subscription(
    user: User,
    plan: PlanType,
    status: SubscriptionStatus,
    duration_months: int = 1,
    now: Optional[datetime] = None,
) -> User:
    now = now or utcnow()
    user.plan_type = PlanType(plan)
    user.subscription_status = SubscriptionStatus(status)
    start_subscription(user, now, duration_months)
    reset_usage(user, user.plan_type)
    return user


def expire_subscription(user: User) -> User:
    user.plan_type = FREE_PLAN
    user.subscription_status = SubscriptionStatus.UNPAID
    clear_subscription_dates(user)
    reset_usage(user, FREE_PLAN)
    return user


def is_expired(user: User, now: datetime) -> bool:
    return (
        user.subscription_end_date is not None
        and user.subscription_end_date < now
        and user.subscription_status != SubscriptionStatus.CANCELED
    )


def is_expiring_soon(user: User, now: datetime, window_days: int) -> bool:
    end = user.subscription_end_date
    return (
        user.subscription_status == SubscriptionStatus.ACTIVE
        and end is not None
        and now <= end <= now + timedelta(days=window_days)
    )


def days_remaining(end_date: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    if end_date is None:
        return None
    now = now or utcnow()
    return math.ceil((end_date - now).total_seconds() / 86400)


def _resource_usage(used: int, left: Optional[int]) -> dict:
    if left is None:
        return {"used": used, "remaining": UNLIMITED, "total": UNLIMITED}
    return {"used": used, "remaining": left, "total": used + left}


def usage_stats(user: User, now: Optional[datetime] = None) -> dict:
    return {
        "user_id": user.id,
        "plan_type": user.plan_type,
        "subscription_status": user.subscription_status,
        "usage": {
            "messages": _resource_usage(user.messages_used, user.message_left),
            "documents": _resource_usage(user.documents_used, user.document_left),
        },
        "subscription": {
            "start_date": user.subscription_start_date,
            "end_date": user.subscription_end_date,
            "days_remaining": days_remaining(user.subscription_end_date, now),
        },
    }


class QuotaEngine:
    def __init__(self, db: Session):
        self.db = db

    # ---------------------------------------------------------
    # LOOKUPS
    # ---------------------------------------------------------
    def lock_user(self, user_id: str) -> User:
        user = (
            self.db.query(User)
            .filter(User.id == user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not user:
            raise NotFoundError("User not found")
        return user

    # ---------------------------------------------------------
    # CONSUMPTION
    # ---------------------------------------------------------
    def consume(self, user_id: str, kind: ResourceKind, amount: int = 1) -> User:
        """
        Spends ``amount`` of ``kind`` in a single conditional UPDATE.

        The remaining-quota check lives in the WHERE clause, so two concurrent
        calls can never both succeed against the same last unit. A NULL
        (unlimited) left-counter stays NULL because NULL - n is NULL.
        """
        kind = ResourceKind(kind)
        used_name, left_name = _COUNTERS[kind]
        used_col = getattr(User, used_name)
        left_col = getattr(User, left_name)

        stmt = (
            update(User)
            .where(User.id == user_id)
            .where(or_(left_col.is_(None), left_col >= amount))
            .values({used_name: used_col + amount, left_name: left_col - amount, "updated_at": utcnow()})
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            self.db.rollback()
            if self.db.query(User.id).filter(User.id == user_id).first() is None:
                raise NotFoundError("User not found")
            raise QuotaExceededError(f"Insufficient {kind.value} quota remaining")

        self.db.commit()
        user = self.db.query(User).filter(User.id == user_id).populate_existing().one()
        logger.debug(f"User {user_id} consumed {amount} {kind.value}(s)")
        return user

    # ---------------------------------------------------------
    # PLAN / SUBSCRIPTION
    # ---------------------------------------------------------
    def change_plan(self, user_id: str, new_plan: PlanType, now: Optional[datetime] = None) -> User:
        user = self.lock_user(user_id)
        change_plan(user, new_plan, now)
        self.db.commit()
        self.db.refresh(user)
        return user

    def set_subscription(
        self,
        user_id: str,
        plan: PlanType,
        status: SubscriptionStatus,
        duration_months: int = 1,
        now: Optional[datetime] = None,
    ) -> User:
        user = self.lock_user(user_id)
        set_subscription(user, plan, status, duration_months, now)
        self.db.commit()
        self.db.refresh(user)
        logger.info(
            f"Subscription override for user {user_id}: {user.plan_type.value}/"
            f"{user.subscription_status.value} until {user.subscription_end_date}"
        )
        return user

    def apply_update(self, user_id: str, payload: UserUpdate, now: Optional[datetime] = None) -> User:
        """
        Applies an allow-listed partial update.

        A plan change runs the full plan transition (reset + subscription dates);
        an explicit status is applied after it so callers can override the
        default ACTIVE/CANCELED. Usage deltas become SQL expressions, except after a
        plan change in the same request, where they apply to the new ceilings.
        """
        user = self.lock_user(user_id)
        fields = payload.model_dump(exclude_unset=True)

        plan_changed = False
        if fields.get("plan_type") is not None:
            plan_changed = change_plan(user, fields["plan_type"], now)
        if fields.get("subscription_status") is not None:
            user.subscription_status = SubscriptionStatus(fields["subscription_status"])

        for name in ("email", "username"):
            if name in fields:
                setattr(user, name, fields[name])

        for name in ("messages_used", "documents_used", "message_left", "document_left"):
            if name not in fields:
                continue
            value = getattr(payload, name)
            column = getattr(User, name)
            if isinstance(value, CounterDelta) and plan_changed:
                # Counters were just reset in memory; the column still holds the old plan's values
                current = getattr(user, name)
                setattr(user, name, None if current is None else max(0, current + value.delta))
            elif isinstance(value, CounterDelta):
                expr = column + value.delta
                if value.delta < 0:
                    # NULL (unlimited) stays NULL; finite counters floor at zero
                    expr = case((column + value.delta < 0, 0), else_=column + value.delta)
                setattr(user, name, expr)
            else:
                setattr(user, name, value)

        self.db.commit()
        self.db.refresh(user)
        return user

    # ---------------------------------------------------------
    # CREATION
    # ---------------------------------------------------------
    def build_user(
        self,
        email: str,
        oauth_id: str,
        username: Optional[str] = None,
        plan: PlanType = FREE_PLAN,
        now: Optional[datetime] = None,
    ) -> User:
        plan = PlanType(plan)
        user = User(email=email, oauth_id=oauth_id, username=username, plan_type=plan)
        reset_usage(user, plan)
        if is_paid(plan):
            user.subscription_status = SubscriptionStatus.ACTIVE
            start_subscription(user, now or utcnow())
        else:
            user.subscription_status = SubscriptionStatus.UNPAID
        return user
