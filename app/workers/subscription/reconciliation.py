"""
app/workers/subscription/reconciliation.py

Time-triggered batch jobs that re-derive subscription and quota state.

MONTHLY (1st of the month, midnight):
    1. Expire: end date passed and status != CANCELED -> BASIC / UNPAID,
       dates cleared, BASIC ceilings.
    2. Reset: everyone still ACTIVE (and not past their end date) gets their
       current plan's ceilings back.
    Expiry commits before the reset query runs, so an expired subscription is
    never handed a fresh paid quota.

DAILY (midnight):
    ACTIVE subscriptions ending within the next EXPIRY_WARNING_DAYS -> PAST_DUE.
    Status only; plan and quota are untouched.

Each user is handled in its own transaction: the row is re-locked, the
predicate re-checked, and a failure is rolled back and recorded without
stopping the rest of the batch.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.plans import SubscriptionStatus
from app.models.user import User, utcnow
from app.services.quota_engine import (
    expire_subscription,
    is_expired,
    is_expiring_soon,
    reset_usage,
)

logger = logging.getLogger(__name__)

MONTHLY_JOB = "monthly_subscription_reset"
DAILY_JOB = "daily_expiry_check"


@dataclass
class JobReport:
    job: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def merge(self, other: "JobReport") -> "JobReport":
        self.processed.extend(other.processed)
        self.failed.update(other.failed)
        return self

    def summary(self) -> str:
        if self.skipped:
            return f"{self.job}: skipped (already running)"
        return f"{self.job}: {len(self.processed)} processed, {len(self.failed)} failed"


class SingleFlight:
    """Non-blocking per-job guard; a second concurrent run is skipped, not queued."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def run(self, name: str, fn: Callable[[], JobReport]) -> JobReport:
        lock = self._lock_for(name)
        if not lock.acquire(blocking=False):
            logger.warning(f"⏭️ {name} is already running, skipping this trigger")
            return JobReport(job=name, started_at=utcnow(), finished_at=utcnow(), skipped=True)
        try:
            return fn()
        finally:
            lock.release()


single_flight = SingleFlight()


# ---------------------------------------------------------
# PER-USER PROCESSING
# ---------------------------------------------------------
def _process_each(
    db: Session,
    job: str,
    user_ids: List[str],
    still_applies: Callable[[User], bool],
    apply: Callable[[User], None],
) -> JobReport:
    report = JobReport(job=job, started_at=utcnow())

    for user_id in user_ids:
        try:
            user = (
                db.query(User)
                .filter(User.id == user_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            # Row may have been deleted or changed since the candidate query
            if user is None or not still_applies(user):
                db.rollback()
                continue
            apply(user)
            db.commit()
            report.processed.append(user_id)
        except Exception as e:
            db.rollback()
            report.failed[user_id] = str(e)
            logger.error(f"❌ {job}: user {user_id} failed: {e}")

    report.finished_at = utcnow()
    return report


def expire_subscriptions(db: Session, now: Optional[datetime] = None) -> JobReport:
    now = now or utcnow()
    candidates = [
        row.id
        for row in db.query(User.id).filter(
            User.subscription_end_date < now,
            User.subscription_status != SubscriptionStatus.CANCELED,
        )
    ]
    return _process_each(
        db,
        f"{MONTHLY_JOB}.expire",
        candidates,
        still_applies=lambda user: is_expired(user, now),
        apply=expire_subscription,
    )


def reset_active_quotas(db: Session, now: Optional[datetime] = None) -> JobReport:
    now = now or utcnow()
    candidates = [
        row.id
        for row in db.query(User.id).filter(
            User.subscription_status == SubscriptionStatus.ACTIVE,
            or_(User.subscription_end_date.is_(None), User.subscription_end_date >= now),
        )
    ]

    def still_active(user: User) -> bool:
        return user.subscription_status == SubscriptionStatus.ACTIVE and not is_expired(user, now)

    return _process_each(
        db,
        f"{MONTHLY_JOB}.reset",
        candidates,
        still_applies=still_active,
        apply=lambda user: reset_usage(user, user.plan_type),
    )


def mark_expiring_past_due(db: Session, now: Optional[datetime] = None, window_days: Optional[int] = None) -> JobReport:
    now = now or utcnow()
    window_days = settings.EXPIRY_WARNING_DAYS if window_days is None else window_days
    horizon = now + timedelta(days=window_days)
    candidates = [
        row.id
        for row in db.query(User.id).filter(
            User.subscription_status == SubscriptionStatus.ACTIVE,
            User.subscription_end_date >= now,
            User.subscription_end_date <= horizon,
        )
    ]

    def mark(user: User) -> None:
        user.subscription_status = SubscriptionStatus.PAST_DUE

    return _process_each(
        db,
        DAILY_JOB,
        candidates,
        still_applies=lambda user: is_expiring_soon(user, now, window_days),
        apply=mark,
    )


# ---------------------------------------------------------
# JOB ENTRYPOINTS (scheduler calls these with no args)
# ---------------------------------------------------------
def run_monthly_reset(now: Optional[datetime] = None, session_factory=SessionLocal) -> JobReport:
    def _run() -> JobReport:
        db = session_factory()
        try:
            logger.info("🔄 Running monthly subscription and limits reset...")
            report = JobReport(job=MONTHLY_JOB, started_at=utcnow())
            report.merge(expire_subscriptions(db, now))
            report.merge(reset_active_quotas(db, now))
            report.finished_at = utcnow()
            logger.info(f"✅ {report.summary()}")
            return report
        finally:
            db.close()

    return single_flight.run(MONTHLY_JOB, _run)


def run_daily_expiry_check(now: Optional[datetime] = None, session_factory=SessionLocal) -> JobReport:
    def _run() -> JobReport:
        db = session_factory()
        try:
            logger.info("🔄 Running daily subscription status check...")
            report = mark_expiring_past_due(db, now)
            logger.info(f"✅ {report.summary()}")
            return report
        finally:
            db.close()

    return single_flight.run(DAILY_JOB, _run)
