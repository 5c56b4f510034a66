import math
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, NotFoundError
from app.core.plans import PlanType, SubscriptionStatus
from app.models.user import User
from app.schemas.user import UserCreate
from app.services.quota_engine import QuotaEngine


class UserService:
    def __init__(self, db: Session):
        self.db = db

    # --- READ ---
    def get_user(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_by_email(self, email: str) -> User:
        user = self.db.query(User).filter(User.email == email).first()
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_by_oauth_id(self, oauth_id: str) -> User:
        user = self.db.query(User).filter(User.oauth_id == oauth_id).first()
        if not user:
            raise NotFoundError("User not found")
        return user

    def list_users(
        self,
        page: int,
        limit: int,
        plan_type: Optional[PlanType] = None,
        status: Optional[SubscriptionStatus] = None,
    ) -> dict:
        query = self.db.query(User)
        if plan_type is not None:
            query = query.filter(User.plan_type == plan_type)
        if status is not None:
            query = query.filter(User.subscription_status == status)

        total = query.count()
        results = (
            query.order_by(User.created_at.desc(), User.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "items": results,
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 0,
        }

    # --- CREATE ---
    def create_user(self, data: UserCreate) -> User:
        existing = (
            self.db.query(User.id)
            .filter(or_(User.email == data.email, User.oauth_id == data.oauth_id))
            .first()
        )
        if existing:
            raise ConflictError("User with this email or oauthId already exists")

        user = QuotaEngine(self.db).build_user(
            email=data.email,
            oauth_id=data.oauth_id,
            username=data.username,
            plan=data.plan_type,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    # --- DELETE ---
    def delete_user(self, user_id: str) -> None:
        user = self.get_user(user_id)
        self.db.delete(user)
        self.db.commit()
