import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Enum, Integer, String, TIMESTAMP

from app.core.database import Base
from app.core.plans import PlanType, SubscriptionStatus


def utcnow() -> datetime:
    """Naive UTC, matching the TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_user_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("messages_used >= 0 AND documents_used >= 0", name="ck_users_used_non_negative"),
        CheckConstraint(
            "(message_left IS NULL OR message_left >= 0) AND (document_left IS NULL OR document_left >= 0)",
            name="ck_users_left_non_negative",
        ),
    )

    id = Column(String(36), primary_key=True, default=new_user_id)

    oauth_id = Column(String, unique=True, index=True, nullable=False)  # Clerk user id
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, nullable=True)

    plan_type = Column(
        Enum(PlanType, name="plan_type"), nullable=False, default=PlanType.BASIC, index=True
    )
    subscription_status = Column(
        Enum(SubscriptionStatus, name="subscription_status"),
        nullable=False,
        default=SubscriptionStatus.UNPAID,
        index=True,
    )
    subscription_start_date = Column(TIMESTAMP, nullable=True)
    subscription_end_date = Column(TIMESTAMP, nullable=True, index=True)

    # Usage for the current period. NULL *_left means unlimited; no column
    # default, the plan ceilings are always assigned explicitly
    messages_used = Column(Integer, nullable=False, default=0)
    documents_used = Column(Integer, nullable=False, default=0)
    message_left = Column(Integer, nullable=True)
    document_left = Column(Integer, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<User id={self.id} email={self.email} plan={self.plan_type}>"
