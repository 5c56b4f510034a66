from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import UnauthorizedError, ValidationError
from app.core.plans import PlanType, SubscriptionStatus
from app.core.security import ClerkPrincipal, require_clerk_user
from app.schemas.common import ApiResponse, Page, success_response
from app.schemas.user import (
    SubscriptionUpdate,
    UsageConsume,
    UserCreate,
    UserOut,
    UserStats,
    UserUpdate,
    is_valid_email,
)
from app.services.quota_engine import QuotaEngine, usage_stats
from app.services.user_service import UserService

router = APIRouter(
    prefix=settings.BASE_PATH,
    tags=["Users"],
    dependencies=[Depends(require_clerk_user)],
)


def _parse_enum(enum_cls, raw: Optional[str]):
    """Unknown filter values are ignored rather than rejected."""
    if not raw:
        return None
    try:
        return enum_cls(raw)
    except ValueError:
        return None


def _user(user) -> UserOut:
    return UserOut.model_validate(user)


# =========================================================
# 1. CREATE
# =========================================================
@router.post("/users", response_model=ApiResponse[UserOut], status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db)):
    user = UserService(db).create_user(payload)
    return success_response(_user(user), "User created successfully")


# =========================================================
# 2. READ
# =========================================================
@router.get("/users", response_model=ApiResponse[Page[UserOut]])
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    planType: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    result = UserService(db).list_users(
        page=page,
        limit=limit,
        plan_type=_parse_enum(PlanType, planType),
        status=_parse_enum(SubscriptionStatus, status),
    )
    result["items"] = [_user(u) for u in result["items"]]
    return success_response(Page[UserOut].model_validate(result))


@router.get("/users/email/{email}", response_model=ApiResponse[UserOut])
def get_user_by_email(email: str, db: Session = Depends(get_db)):
    if not is_valid_email(email):
        raise ValidationError("Valid email is required")
    return success_response(_user(UserService(db).get_by_email(email)))


@router.get("/users/{user_id}", response_model=ApiResponse[UserOut])
def get_user(user_id: str, db: Session = Depends(get_db)):
    return success_response(_user(UserService(db).get_user(user_id)))


@router.get("/users/{user_id}/stats", response_model=ApiResponse[UserStats])
def get_user_stats(user_id: str, db: Session = Depends(get_db)):
    user = UserService(db).get_user(user_id)
    return success_response(UserStats.model_validate(usage_stats(user)))


@router.get("/me", response_model=ApiResponse[UserOut])
def get_me(
    principal: ClerkPrincipal = Depends(require_clerk_user),
    db: Session = Depends(get_db),
):
    if not principal.subject:
        raise UnauthorizedError("No authenticated Clerk user")
    return success_response(_user(UserService(db).get_by_oauth_id(principal.subject)))


# =========================================================
# 3. UPDATE
# =========================================================
@router.patch("/users/{user_id}", response_model=ApiResponse[UserOut])
def update_user(user_id: str, payload: UserUpdate, db: Session = Depends(get_db)):
    user = QuotaEngine(db).apply_update(user_id, payload)
    return success_response(_user(user), "User updated successfully")


@router.patch("/users/{user_id}/subscription", response_model=ApiResponse[UserOut])
def update_subscription(user_id: str, payload: SubscriptionUpdate, db: Session = Depends(get_db)):
    user = QuotaEngine(db).set_subscription(
        user_id,
        plan=payload.plan_type,
        status=payload.subscription_status,
        duration_months=payload.duration_months,
    )
    return success_response(_user(user), "Subscription updated successfully")


@router.patch("/users/{user_id}/usage", response_model=ApiResponse[UserOut])
def consume_usage(user_id: str, payload: UsageConsume, db: Session = Depends(get_db)):
    user = QuotaEngine(db).consume(user_id, payload.type, payload.amount)
    return success_response(_user(user), f"{payload.type.value} usage updated successfully")


# =========================================================
# 4. DELETE
# =========================================================
@router.delete("/users/{user_id}", response_model=ApiResponse[None])
def delete_user(user_id: str, db: Session = Depends(get_db)):
    UserService(db).delete_user(user_id)
    return success_response(None, "User deleted successfully")
