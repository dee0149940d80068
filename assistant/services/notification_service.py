import json
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from assistant.logging_config import get_logger, redact_id
from assistant.models import Account, Lead, Notification, Transaction, User
from assistant.models.enums import (
    CLOSED_LEAD_STATUSES,
    EXPENSE_CATEGORIES,
    LeadStatus,
    NotificationStatus,
    NotificationType,
    TransactionCategory,
)
from assistant.services.clock import ensure_timezone, local_time, to_utc
from assistant.services.prompts import evening_summary_prompt, morning_digest_prompt
from assistant.services.sales_metrics import day_bounds

logger = get_logger("notification_service")

CONTENT_MAX_LENGTH = 1000
LEAD_WINDOW_DAYS = 7
TRANSACTION_WINDOW_DAYS = 7
RECENT_TRANSACTION_DAYS = 3
LEAD_LIMIT = 20
TRANSACTION_LIMIT = 10
STREAK_WEEKS = 12
ACTIVE_STATUSES = (LeadStatus.INTERESTED.value, LeadStatus.WAITING.value, LeadStatus.PROPOSAL_SENT.value)
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


def lead_priority(lead: Lead) -> str:
    if lead.interested:
        return "high"
    if lead.replied:
        return "medium"
    return "low"


def due_leads(leads: list[Lead], now: datetime, tz_name: str) -> list[dict]:
    """Follow-ups due by the end of today, overdue first, then priority, then most overdue."""
    today_start, today_end = day_bounds(now, tz_name)
    due = []
    for lead in leads:
        followup = ensure_timezone(lead.next_followup)
        if followup is None or followup >= today_end:
            continue
        due.append(
            {
                "name": lead.name,
                "status": lead.status,
                "next_step": lead.next_step,
                "is_overdue": followup < today_start,
                "days_overdue": max(0, (to_utc(now) - followup).days),
                "priority": lead_priority(lead),
            }
        )
    due.sort(key=lambda item: (not item["is_overdue"], PRIORITY_ORDER[item["priority"]], -item["days_overdue"]))
    return due


def tomorrow_tasks(leads: list[Lead], now: datetime, tz_name: str) -> list[dict]:
    start, end = day_bounds(to_utc(now) + timedelta(days=1), tz_name)
    tasks = []
    for lead in leads:
        followup = ensure_timezone(lead.next_followup)
        if followup is None or not start <= followup < end:
            continue
        tasks.append(
            {
                "name": lead.name,
                "next_step": lead.next_step or "Follow up",
                "status": lead.status,
                "time": local_time(followup, tz_name).strftime("%H:%M"),
            }
        )
    return sorted(tasks, key=lambda task: task["time"])


def today_activities(leads: list[Lead], transactions: list[Transaction], now: datetime, tz_name: str) -> dict:
    today_start, _ = day_bounds(now, tz_name)
    touched = [lead for lead in leads if ensure_timezone(lead.updated_at) >= today_start]
    todays = [tx for tx in transactions if ensure_timezone(tx.created_at) >= today_start]
    created = [lead for lead in touched if (lead.updated_at - lead.created_at).days == 0]
    return {
        "leads_updated": len(touched) - len(created),
        "leads_created": len(created),
        "transactions_added": len(todays),
        "total_spent": sum(abs(tx.amount) for tx in todays if tx.amount < 0),
        "total_earned": sum(tx.amount for tx in todays if tx.amount > 0),
        "followups_completed": len([lead for lead in touched if lead.contacted or lead.replied]),
    }


def user_insights(user: User, leads: list[Lead], transactions: list[Transaction], now: datetime, tz_name: str) -> dict:
    week_ago = to_utc(now) - timedelta(days=7)
    income = sum(tx.amount for tx in transactions if tx.category == TransactionCategory.INCOME.value)
    expenses = sum(abs(tx.amount) for tx in transactions if tx.category in EXPENSE_CATEGORIES)
    spending = Counter()
    for tx in transactions:
        if tx.amount < 0:
            spending[tx.category] += abs(tx.amount)

    return {
        "total_leads": len(leads),
        "active_leads": len([lead for lead in leads if lead.status not in CLOSED_LEAD_STATUSES]),
        "recent_activity": len([lead for lead in leads if ensure_timezone(lead.updated_at) >= week_ago])
        + len(transactions),
        "services_active": [service for service in (user.services or "").split(",") if service],
        "last_active_date": local_time(transactions[0].created_at, tz_name).strftime("%b %d") if transactions else None,
        "savings_rate": round((income - expenses) / income * 100) if income > 0 else 0,
        "top_category": spending.most_common(1)[0][0] if spending else None,
    }


def active_week_streak(db: Session, user_id, now: datetime) -> int:
    """Consecutive 7-day windows, counting back from now, with lead or transaction activity.

    An empty current window does not break the streak.
    """
    now = to_utc(now)
    streak = 0
    for week in range(STREAK_WEEKS):
        week_end = now - timedelta(weeks=week)
        week_start = week_end - timedelta(weeks=1)
        has_activity = (
            db.query(Lead.id)
            .filter(Lead.user_id == user_id, Lead.updated_at >= week_start, Lead.updated_at < week_end)
            .first()
            is not None
            or db.query(Transaction.id)
            .filter(
                Transaction.user_id == user_id,
                Transaction.created_at >= week_start,
                Transaction.created_at < week_end,
            )
            .first()
            is not None
        )
        if has_activity:
            streak += 1
        elif week > 0:
            break
    return streak


def goal_summary(db: Session, user_id) -> list[dict]:
    accounts = db.query(Account).filter(Account.user_id == user_id, Account.target_amount.isnot(None)).all()
    return [
        {
            "name": account.name,
            "progress": round(account.current_balance / account.target_amount * 100) if account.target_amount else 0,
            "current": account.current_balance,
            "target": account.target_amount,
        }
        for account in accounts
    ]


def progress_metrics(db: Session, user: User, leads: list[Lead], transactions: list[Transaction], now, tz_name) -> dict:
    month_ago = to_utc(now) - timedelta(days=30)
    recent = [tx for tx in transactions if ensure_timezone(tx.created_at) >= month_ago]
    income = sum(tx.amount for tx in recent if tx.category == TransactionCategory.INCOME.value)
    expenses = sum(abs(tx.amount) for tx in recent if tx.category in EXPENSE_CATEGORIES)
    interested = len([lead for lead in leads if lead.interested])
    return {
        "active_leads": len([lead for lead in leads if lead.status not in CLOSED_LEAD_STATUSES]),
        "conversion_rate": round(interested / len(leads) * 100) if leads else 0,
        "savings_rate": round((income - expenses) / income * 100) if income > 0 else 0,
        "monthly_income": income,
        "monthly_expenses": expenses,
        "week_streak": active_week_streak(db, user.id, now),
        "goals": goal_summary(db, user.id),
    }


class NotificationService:
    """Morning digests and evening summaries, written by the AI and sent to the user's chat."""

    def __init__(self, ctx):
        self.ctx = ctx
        self.executor = ctx.executor

    def send_morning_digest(self, db: Session, user_id) -> Optional[Notification]:
        return self._send(db, user_id, NotificationType.MORNING)

    def send_evening_summary(self, db: Session, user_id) -> Optional[Notification]:
        return self._send(db, user_id, NotificationType.EVENING)

    def send(self, db: Session, user_id, kind: str) -> Optional[Notification]:
        return self._send(db, user_id, NotificationType(kind))

    def _send(self, db: Session, user_id, kind: NotificationType) -> Optional[Notification]:
        """Generate and deliver one notification. Never raises; failures are recorded."""
        log = {"user_id": redact_id(user_id), "type": kind.value}
        try:
            user = db.query(User).filter(User.id == user_id).first()
            enabled = (
                user.enable_morning_notification if kind == NotificationType.MORNING else user.enable_evening_notification
            ) if user else False
            if not enabled:
                logger.info(f"User not found or {kind.value} notifications disabled", extra={"context": log})
                return None

            content = self.generate(db, user, kind)
            platform = user.notification_platform or user.platform
            messenger = self.ctx.messenger(platform)
            if messenger is None:
                raise ValueError(f"Unsupported platform: {platform}")
            messenger.send_message(user.platform_id, content)

            notification = Notification(
                user_id=user.id,
                type=kind.value,
                content=content[:CONTENT_MAX_LENGTH],
                platform=platform,
                status=NotificationStatus.SENT.value,
            )
            db.add(notification)
            db.commit()
            logger.info("Notification sent successfully", extra={"context": {**log, "platform": platform}})
            return notification
        except Exception as exc:
            db.rollback()
            logger.error(f"Failed to send {kind.value} notification: {exc}", exc_info=exc, extra={"context": log})
            return self._record_failure(db, user_id, kind, exc)

    def generate(self, db: Session, user: User, kind: NotificationType) -> str:
        now = self.ctx.now()
        tz_name = user.timezone or self.ctx.settings.timezone
        leads = self._relevant_leads(db, user.id, now, tz_name)
        transactions = self._recent_transactions(db, user.id, now)
        user_name = user.name or user.username or "there"

        if kind == NotificationType.MORNING:
            recent_since = to_utc(now) - timedelta(days=RECENT_TRANSACTION_DAYS)
            recent = [
                {
                    "description": tx.description,
                    "amount": tx.amount,
                    "category": tx.category,
                    "date": local_time(tx.date or tx.created_at, tz_name).strftime("%b %d"),
                    "babylon_principle": tx.babylon_principle,
                }
                for tx in transactions
                if ensure_timezone(tx.created_at) >= recent_since
            ]
            insights = user_insights(user, leads, transactions, now, tz_name)
            insights["tomorrow_task_count"] = len(tomorrow_tasks(leads, now, tz_name))
            insights["user_name"] = user_name
            prompt = morning_digest_prompt(
                json.dumps(due_leads(leads, now, tz_name)), json.dumps(recent), json.dumps(insights)
            )
            return self.executor.complete(prompt, "Generate my morning digest", label="morning_digest", user_id=user.id)

        activities = today_activities(leads, transactions, now, tz_name)
        activities["user_name"] = user_name
        prompt = evening_summary_prompt(
            json.dumps(activities),
            json.dumps(tomorrow_tasks(leads, now, tz_name)),
            json.dumps(progress_metrics(db, user, leads, transactions, now, tz_name)),
        )
        return self.executor.complete(prompt, "Generate my evening summary", label="evening_summary", user_id=user.id)

    def _relevant_leads(self, db: Session, user_id, now: datetime, tz_name: str) -> list[Lead]:
        """Leads due within a week, touched today, or in an active status."""
        today_start, _ = day_bounds(now, tz_name)
        return (
            db.query(Lead)
            .filter(
                Lead.user_id == user_id,
                or_(
                    Lead.next_followup <= to_utc(now) + timedelta(days=LEAD_WINDOW_DAYS),
                    Lead.updated_at >= today_start,
                    Lead.status.in_(ACTIVE_STATUSES),
                ),
            )
            .order_by(Lead.next_followup.is_(None), Lead.next_followup.asc(), Lead.updated_at.desc())
            .limit(LEAD_LIMIT)
            .all()
        )

    def _recent_transactions(self, db: Session, user_id, now: datetime) -> list[Transaction]:
        since = to_utc(now) - timedelta(days=TRANSACTION_WINDOW_DAYS)
        return (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id, Transaction.created_at >= since)
            .order_by(Transaction.created_at.desc())
            .limit(TRANSACTION_LIMIT)
            .all()
        )

    def _record_failure(self, db: Session, user_id, kind: NotificationType, error: Exception) -> Optional[Notification]:
        try:
            notification = Notification(
                user_id=user_id,
                type=kind.value,
                content=f"Failed: {error}"[:CONTENT_MAX_LENGTH],
                platform="unknown",
                status=NotificationStatus.FAILED.value,
            )
            db.add(notification)
            db.commit()
            return notification
        except Exception as exc:
            db.rollback()
            logger.error(f"Failed to log notification failure: {exc}")
            return None


def get_notification_history(db: Session, user_id, limit: int = 10) -> list[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.sent_at.desc())
        .limit(limit)
        .all()
    )
