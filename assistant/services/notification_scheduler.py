import asyncio
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from assistant.logging_config import get_logger
from assistant.models import User
from assistant.models.enums import NotificationType
from assistant.services.clock import local_time
from assistant.services.notification_service import NotificationService

logger = get_logger("notification_scheduler")


def due_time_prefix(now: datetime, tz_name: str) -> str:
    """"HH:M" of the local time, so a 15 minute tick matches HH:M0 through HH:M9."""
    return local_time(now, tz_name).strftime("%H:%M")[:4]


def users_due(db: Session, kind: NotificationType, prefix: str) -> list[User]:
    if kind == NotificationType.MORNING:
        enabled, time_column = User.enable_morning_notification, User.morning_notification_time
    else:
        enabled, time_column = User.enable_evening_notification, User.evening_notification_time
    return (
        db.query(User)
        .filter(User.is_active.is_(True), enabled.is_(True), time_column.startswith(prefix))
        .order_by(User.created_at)
        .all()
    )


def run_due_notifications(ctx, db: Session, now: Optional[datetime] = None) -> dict:
    """Send every notification due at this tick. One user's failure never stops the others."""
    now = now or ctx.now()
    prefix = due_time_prefix(now, ctx.settings.timezone)
    service = NotificationService(ctx)
    results = {"time": prefix, "morning": 0, "evening": 0, "failed": 0}

    for kind in (NotificationType.MORNING, NotificationType.EVENING):
        users = users_due(db, kind, prefix)
        logger.info(f"Checking {kind.value} notifications", extra={"context": {"time": prefix, "due": len(users)}})
        for user in users:
            notification = service.send(db, user.id, kind.value)
            if notification is not None and notification.status == "sent":
                results[kind.value] += 1
            else:
                results["failed"] += 1
    return results


class NotificationScheduler:
    """Runs run_due_notifications on a fixed interval inside the event loop."""

    def __init__(self, ctx, session_factory: Callable[[], Session], interval_minutes: Optional[int] = None):
        self.ctx = ctx
        self.session_factory = session_factory
        self.interval_seconds = (interval_minutes or ctx.settings.notification_interval_minutes) * 60
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> dict:
        db = self.session_factory()
        try:
            return run_due_notifications(self.ctx, db)
        finally:
            db.close()

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                results = await asyncio.to_thread(self.tick)
                logger.info("Notification tick processed", extra={"context": results})
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Notification loop failed", extra={"context": {"error": str(exc)}})

    def start(self) -> None:
        if self.running:
            logger.warning("Notification scheduler already running")
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Notification scheduler started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Notification scheduler stopped")

    async def run_forever(self) -> None:
        self.start()
        await self._task

    def trigger(self, db: Session, user_id, kind: str):
        """Send one notification now, for manual testing."""
        return NotificationService(self.ctx).send(db, user_id, kind)
