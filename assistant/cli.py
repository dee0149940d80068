"""Operational commands: notification runs, manual sends, Telegram webhook setup."""

import argparse
import asyncio
import sys
import uuid
from typing import Optional

from assistant.config import settings
from assistant.context import build_app_context
from assistant.database import SessionLocal, init_db
from assistant.logging_config import setup_logging
from assistant.models.enums import NotificationType
from assistant.services.errors import MessagingError
from assistant.services.notification_scheduler import NotificationScheduler, run_due_notifications
from assistant.services.notification_service import NotificationService

TELEGRAM_WEBHOOK_PATH = "/webhooks/telegram"


def _scheduler(args) -> int:
    ctx = build_app_context(settings)
    scheduler = NotificationScheduler(ctx, SessionLocal, interval_minutes=args.interval)
    print(f"⏰ Notification scheduler running every {scheduler.interval_seconds // 60} minutes. Ctrl+C to stop.")
    try:
        asyncio.run(scheduler.run_forever())
    except KeyboardInterrupt:
        print("👋 Scheduler stopped")
    finally:
        ctx.close()
    return 0


def _run_once(args) -> int:
    ctx = build_app_context(settings)
    db = SessionLocal()
    try:
        results = run_due_notifications(ctx, db)
    finally:
        db.close()
        ctx.close()
    print(f"✅ {results['time']}x: morning={results['morning']} evening={results['evening']} failed={results['failed']}")
    return 0


def _send(args) -> int:
    try:
        user_id = uuid.UUID(args.user_id)
    except ValueError:
        print(f"❌ Invalid user id: {args.user_id}")
        return 1

    ctx = build_app_context(settings)
    db = SessionLocal()
    try:
        notification = NotificationService(ctx).send(db, user_id, args.type)
        if notification is None:
            print("⚠️ User not found or notifications of this type are disabled")
            return 1
        if notification.status != "sent":
            print(f"❌ {notification.content}")
            return 1
        print(f"✅ {args.type} notification sent via {notification.platform}")
        print(notification.content)
        return 0
    finally:
        db.close()
        ctx.close()


def _set_webhook(args) -> int:
    ctx = build_app_context(settings)
    telegram = ctx.messenger("telegram")
    endpoint = args.url.rstrip("/") + TELEGRAM_WEBHOOK_PATH
    try:
        if not args.status_only:
            print(f"📡 Setting webhook to: {endpoint}")
            telegram.set_webhook(endpoint)
        info = telegram.get_webhook_info().get("result", {})
    except MessagingError as e:
        print(f"❌ {e}")
        return 1
    finally:
        ctx.close()

    print(f"📋 Current webhook: {info.get('url') or 'None'}")
    print(f"   Pending updates: {info.get('pending_update_count', 0)}")
    if info.get("last_error_message"):
        print(f"⚠️  Last error: {info['last_error_message']}")
    if not args.status_only and info.get("url") != endpoint:
        print("⚠️  Webhook verification failed - URL mismatch")
        return 1
    return 0


def _init_db(args) -> int:
    init_db()
    print("✅ Database tables created")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="assistant", description="Sales & finance chat assistant tools")
    commands = parser.add_subparsers(dest="command", required=True)

    scheduler = commands.add_parser("scheduler", help="Run the notification scheduler until interrupted")
    scheduler.add_argument("--interval", type=int, default=None, help="Minutes between ticks")
    scheduler.set_defaults(handler=_scheduler)

    commands.add_parser("run-once", help="Send notifications due right now").set_defaults(handler=_run_once)

    send = commands.add_parser("send", help="Send one notification to a user")
    send.add_argument("--user-id", required=True)
    send.add_argument("--type", choices=[kind.value for kind in NotificationType], default="morning")
    send.set_defaults(handler=_send)

    webhook = commands.add_parser("set-webhook", help="Point the Telegram bot at this service")
    webhook.add_argument("--url", default="", help="Public base URL, e.g. https://bot.example.com")
    webhook.add_argument("--status", dest="status_only", action="store_true", help="Only show the current webhook")
    webhook.set_defaults(handler=_set_webhook)

    commands.add_parser("init-db", help="Create missing database tables").set_defaults(handler=_init_db)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    setup_logging(settings.log_level)
    args = build_parser().parse_args(argv)
    if args.command == "set-webhook" and not args.status_only and not args.url:
        print("❌ --url is required to set the webhook")
        return 1
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
