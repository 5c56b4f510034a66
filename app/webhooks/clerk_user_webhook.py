"""
Clerk account-lifecycle webhooks.

Clerk delivers events through Svix, so each request carries ``svix-id``,
``svix-timestamp`` and ``svix-signature`` headers that are checked against
the raw body before anything in the payload is trusted. Verified events are
handed down an ordered chain of handlers; the user handler claims ``user.*``
events and everything else falls through to the next handler.

Svix may redeliver an event, so every user mutation here is idempotent on the
Clerk user id.
"""

import json
import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from svix.webhooks import Webhook, WebhookVerificationError

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import ApiError, ConflictError, ValidationError, WebhookAuthenticationError
from app.models.user import User
from app.schemas.common import success_response
from app.services.quota_engine import QuotaEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/userWebhook", tags=["Webhooks"])

SVIX_HEADERS = ("svix-id", "svix-timestamp", "svix-signature")

# A handler returns a response message when it claims the event, None to pass it on
EventHandler = Callable[[dict, Session], Optional[str]]


# ---------------------------------------------------------
# VERIFICATION
# ---------------------------------------------------------
def verify_event(body: bytes, headers, secret: Optional[str]) -> dict:
    if not secret:
        logger.error("Missing webhook secret environment variable")
        raise ApiError("Server configuration error", status_code=500)

    svix_headers = {name: headers.get(name) for name in SVIX_HEADERS}
    if not all(svix_headers.values()):
        logger.warning("Missing Svix headers on webhook request")
        raise WebhookAuthenticationError("Missing verification headers")

    try:
        Webhook(secret).verify(body, svix_headers)
    except WebhookVerificationError as e:
        logger.error(f"Webhook verification failed: {e}")
        raise WebhookAuthenticationError("Invalid webhook signature")

    # Only the verified raw body is trusted
    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationError("Invalid webhook payload")
    if not isinstance(event, dict):
        raise ValidationError("Invalid webhook payload")
    return event


# ---------------------------------------------------------
# PAYLOAD HELPERS
# ---------------------------------------------------------
def primary_email(data: dict) -> Optional[str]:
    primary_id = data.get("primary_email_address_id")
    for entry in data.get("email_addresses") or []:
        if entry.get("id") == primary_id:
            return entry.get("email_address")
    return None


def default_username(data: dict, email: str) -> str:
    return data.get("username") or email.split("@")[0]


# ---------------------------------------------------------
# USER EVENTS
# ---------------------------------------------------------
def handle_user_created(data: dict, db: Session) -> None:
    oauth_id = data.get("id")
    email = primary_email(data)
    if not email:
        logger.warning(f"No primary email found for user {oauth_id}")
        return

    existing = db.query(User).filter(User.oauth_id == oauth_id).first()
    if existing:
        logger.info(f"User {oauth_id} already exists, treating user.created as redelivery")
        return

    owner = db.query(User).filter(User.email == email).first()
    if owner:
        logger.error(f"Email {email} for Clerk user {oauth_id} already belongs to {owner.oauth_id}")
        raise ConflictError("User with this email already exists")

    user = QuotaEngine(db).build_user(email=email, oauth_id=oauth_id, username=default_username(data, email))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent redelivery won the insert
        db.rollback()
        if db.query(User.id).filter(User.oauth_id == oauth_id).first():
            logger.info(f"User {oauth_id} was created concurrently, treating as redelivery")
            return
        raise
    logger.info(f"User created successfully: {user.id} ({user.email})")


def handle_user_updated(data: dict, db: Session) -> None:
    oauth_id = data.get("id")
    email = primary_email(data)
    if not email:
        logger.warning(f"No primary email found for user update {oauth_id}")
        return

    user = db.query(User).filter(User.oauth_id == oauth_id).with_for_update().first()
    if user is None:
        # user.created was missed or is still in flight
        logger.info(f"user.updated for unknown user {oauth_id}, creating it")
        handle_user_created(data, db)
        return

    user.email = email
    user.username = default_username(data, email)
    db.commit()
    logger.info(f"User updated successfully: {user.id} ({user.email})")


def handle_user_deleted(data: dict, db: Session) -> None:
    oauth_id = data.get("id")
    deleted = db.query(User).filter(User.oauth_id == oauth_id).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"User deleted successfully: {oauth_id}")
    else:
        logger.info(f"user.deleted for unknown user {oauth_id}, nothing to do")


USER_EVENT_HANDLERS = {
    "user.created": handle_user_created,
    "user.updated": handle_user_updated,
    "user.deleted": handle_user_deleted,
}


def user_event_handler(event: dict, db: Session) -> Optional[str]:
    event_type = event.get("type") or ""
    if not event_type.startswith("user."):
        return None

    data = event.get("data") or {}
    logger.info(f"Processing user webhook: {event_type} (user {data.get('id')})")

    handler = USER_EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled user webhook type: {event_type}")
    else:
        handler(data, db)
    return "User webhook processed successfully"


def ignore_event_handler(event: dict, db: Session) -> Optional[str]:
    logger.info(f"Webhook {event.get('type')} has no handler, acknowledging")
    return "Webhook ignored"


class WebhookDispatcher:
    """Ordered chain: the first handler to return a message wins."""

    def __init__(self, handlers: Optional[List[EventHandler]] = None):
        self.handlers: List[EventHandler] = list(handlers or [])

    def register(self, handler: EventHandler, index: Optional[int] = None) -> None:
        if index is None:
            self.handlers.append(handler)
        else:
            self.handlers.insert(index, handler)

    def dispatch(self, event: dict, db: Session) -> str:
        for handler in self.handlers:
            message = handler(event, db)
            if message is not None:
                return message
        return "Webhook ignored"


dispatcher = WebhookDispatcher([user_event_handler, ignore_event_handler])


# ---------------------------------------------------------
# ENDPOINT
# ---------------------------------------------------------
@router.post("/clerk")
async def clerk_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    event = verify_event(body, request.headers, settings.USER_WEBHOOK_SECRET)

    message = await run_in_threadpool(dispatcher.dispatch, event, db)
    return success_response(message=message)
