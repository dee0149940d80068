import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from assistant.models import Lead, Notification, Transaction
from assistant.services import user_service
from assistant.services.notification_scheduler import NotificationScheduler, due_time_prefix, run_due_notifications
from assistant.services.notification_service import (
    NotificationService,
    active_week_streak,
    due_leads,
    get_notification_history,
    tomorrow_tasks,
)

TZ = "Africa/Johannesburg"
# 12:00 in Johannesburg
NOW = datetime(2026, 10, 15, 10, 0, tzinfo=timezone.utc)


def _lead(name, followup=None, **fields):
    return Lead(name=name, next_followup=followup, status=fields.pop("status", "New"), **fields)


def _enable(db, user, morning="08:00", evening="18:00"):
    user_service.update_notification_preferences(
        db, user.id, morning_time=morning, evening_time=evening, enable_morning=True, enable_evening=True
    )


class TestDueLeads:
    def test_overdue_first_then_priority(self):
        leads = [
            _lead("Due Today", NOW + timedelta(hours=3)),
            _lead("Old Cold", NOW - timedelta(days=3)),
            _lead("Hot Prospect", NOW - timedelta(days=1), interested=True),
            _lead("Next Week", NOW + timedelta(days=7)),
            _lead("No Date"),
        ]

        due = due_leads(leads, NOW, TZ)

        assert [item["name"] for item in due] == ["Hot Prospect", "Old Cold", "Due Today"]
        assert due[0]["priority"] == "high"
        assert due[1]["days_overdue"] == 3
        assert due[2]["is_overdue"] is False

    def test_tomorrow_tasks_in_local_time(self):
        leads = [
            _lead("Later", datetime(2026, 10, 16, 13, 0, tzinfo=timezone.utc), next_step="Send proposal"),
            _lead("Early", datetime(2026, 10, 16, 7, 0, tzinfo=timezone.utc)),
            _lead("Today", NOW + timedelta(hours=1)),
        ]

        tasks = tomorrow_tasks(leads, NOW, TZ)

        assert [(task["name"], task["time"]) for task in tasks] == [("Early", "09:00"), ("Later", "15:00")]
        assert tasks[0]["next_step"] == "Follow up"


class TestWeekStreak:
    def test_counts_consecutive_active_weeks(self, db, user):
        now = datetime.now(timezone.utc)
        for days_ago in (1, 9):
            db.add(
                Transaction(
                    user_id=user.id,
                    description="Coffee",
                    amount=-35,
                    category="Variable Expenses",
                    created_at=now - timedelta(days=days_ago),
                )
            )
        db.commit()

        assert active_week_streak(db, user.id, now) == 2


class TestNotificationService:
    def test_morning_digest_is_sent_and_logged(self, ctx, db, user, llm, messengers):
        _enable(db, user)
        db.add(Lead(user_id=user.id, name="Acme Corp", next_followup=datetime.now(timezone.utc) - timedelta(days=1)))
        db.commit()
        llm.script("morning", "☀️ Morning! Acme Corp is overdue.")

        notification = NotificationService(ctx).send_morning_digest(db, user.id)

        assert notification.status == "sent"
        assert notification.platform == "telegram"
        assert messengers["telegram"].sent == [("1001", "☀️ Morning! Acme Corp is overdue.")]
        assert '"name": "Acme Corp"' in llm.prompts_for("morning")[0]
        assert llm.calls_for("morning") == ["Generate my morning digest"]

    def test_evening_summary_uses_notification_platform(self, ctx, db, user, llm, messengers):
        _enable(db, user)
        user.notification_platform = "sms"
        db.commit()
        llm.script("evening", "🌙 Nice work today.")

        notification = NotificationService(ctx).send(db, user.id, "evening")

        assert notification.platform == "sms"
        assert messengers["sms"].sent == [("1001", "🌙 Nice work today.")]
        assert messengers["telegram"].sent == []

    def test_disabled_notifications_are_skipped(self, ctx, db, user, llm):
        assert NotificationService(ctx).send_morning_digest(db, user.id) is None
        assert llm.calls == []
        assert get_notification_history(db, user.id) == []

    def test_send_failure_is_recorded(self, ctx, db, user, llm, messengers):
        _enable(db, user)
        llm.script("morning", "☀️ Morning!")
        messengers["telegram"].fail = True

        notification = NotificationService(ctx).send_morning_digest(db, user.id)

        assert notification.status == "failed"
        assert notification.platform == "unknown"
        assert notification.content == "Failed: telegram send failed"

    def test_ai_failure_is_recorded(self, ctx, db, user, llm, messengers):
        _enable(db, user)

        notification = NotificationService(ctx).send_evening_summary(db, user.id)

        assert notification.status == "failed"
        assert messengers["telegram"].sent == []

    def test_content_is_truncated(self, ctx, db, user, llm):
        _enable(db, user)
        llm.script("morning", "x" * 1500)

        notification = NotificationService(ctx).send_morning_digest(db, user.id)

        assert len(notification.content) == 1000


class TestScheduler:
    def test_due_time_prefix(self):
        assert due_time_prefix(datetime(2026, 10, 15, 6, 5, tzinfo=timezone.utc), TZ) == "08:0"
        assert due_time_prefix(datetime(2026, 10, 15, 16, 14, tzinfo=timezone.utc), TZ) == "18:1"

    def test_runs_only_users_due_now(self, ctx, db, user, llm):
        _enable(db, user, morning="08:00")
        later = user_service.find_or_create_user(db, "telegram", "2002")
        _enable(db, later, morning="08:15")
        llm.script("morning", "☀️ Morning!")

        results = run_due_notifications(ctx, db, now=datetime(2026, 10, 15, 6, 5, tzinfo=timezone.utc))

        assert results == {"time": "08:0", "morning": 1, "evening": 0, "failed": 0}
        assert db.query(Notification).count() == 1

    def test_one_failure_does_not_stop_others(self, ctx, db, user, llm, messengers):
        _enable(db, user, evening="18:00")
        other = user_service.find_or_create_user(db, "whatsapp", "27821234567")
        _enable(db, other, evening="18:05")
        messengers["telegram"].fail = True
        llm.script("evening", "🌙 one", "🌙 two")

        results = run_due_notifications(ctx, db, now=datetime(2026, 10, 15, 16, 2, tzinfo=timezone.utc))

        assert results["evening"] == 1
        assert results["failed"] == 1
        assert len(messengers["whatsapp"].texts) == 1

    def test_tick_uses_fresh_session(self, ctx, engine, db, user, llm):
        _enable(db, user)
        scheduler = NotificationScheduler(ctx, sessionmaker(bind=engine), interval_minutes=15)

        results = scheduler.tick()

        assert scheduler.interval_seconds == 900
        assert set(results) == {"time", "morning", "evening", "failed"}

    def test_start_and_stop(self, ctx, engine):
        async def scenario():
            scheduler = NotificationScheduler(ctx, sessionmaker(bind=engine))
            scheduler.start()
            assert scheduler.running
            await scheduler.stop()
            assert not scheduler.running

        asyncio.run(scenario())

    @pytest.mark.parametrize("kind", ["morning", "evening"])
    def test_trigger(self, ctx, engine, db, user, llm, kind):
        _enable(db, user)
        llm.script(kind, f"{kind} message")
        scheduler = NotificationScheduler(ctx, sessionmaker(bind=engine))

        assert scheduler.trigger(db, user.id, kind).status == "sent"
