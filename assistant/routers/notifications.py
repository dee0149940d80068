import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from assistant.context import AppContext, get_context
from assistant.database import get_db
from assistant.logging_config import get_logger, redact_id
from assistant.models import User
from assistant.models.enums import NotificationType
from assistant.schemas.api import (
    CronResponse,
    NotificationTestRequest,
    NotificationTestResponse,
    NotificationUser,
    NotificationUsersResponse,
)
from assistant.services.notification_scheduler import run_due_notifications
from assistant.services.notification_service import NotificationService

logger = get_logger("notifications")

router = APIRouter(tags=["notifications"])


def _require_cron_secret(ctx: AppContext, authorization: Optional[str]) -> None:
    expected = ctx.settings.cron_secret
    if not expected:
        raise HTTPException(status_code=500, detail="CRON_SECRET not configured")
    if authorization != f"Bearer {expected}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/notifications/users", response_model=NotificationUsersResponse)
def notification_users(db: Session = Depends(get_db)):
    users = db.query(User).order_by(User.created_at.desc()).all()
    return NotificationUsersResponse(users=[NotificationUser.model_validate(user) for user in users])


@router.post("/notifications/test", response_model=NotificationTestResponse)
def test_notification(
    request: NotificationTestRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    if not request.user_id or not request.type:
        raise HTTPException(status_code=400, detail="user_id and type required")
    if request.type not in {kind.value for kind in NotificationType}:
        raise HTTPException(status_code=400, detail="Invalid type. Use morning or evening")
    try:
        user_id = uuid.UUID(request.user_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="User not found")
    if not db.query(User.id).filter(User.id == user_id).first():
        raise HTTPException(status_code=404, detail="User not found")

    logger.info("Testing notification", extra={"context": {"user_id": redact_id(user_id), "type": request.type}})
    notification = NotificationService(ctx).send(db, user_id, request.type)
    if notification is None:
        return NotificationTestResponse(success=False, message=f"{request.type} notifications are disabled")
    return NotificationTestResponse(
        success=notification.status == "sent",
        message=f"{request.type} notification {notification.status} for user {user_id}",
        status=notification.status,
    )


@router.get("/cron/notifications", response_model=CronResponse)
def cron_notifications(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    _require_cron_secret(ctx, authorization)
    results = run_due_notifications(ctx, db)
    return CronResponse(
        success=True,
        time=results["time"],
        morning_count=results["morning"],
        evening_count=results["evening"],
        failed_count=results["failed"],
    )
