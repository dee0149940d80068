import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assistant.config import settings
from assistant.context import AppContext, build_app_context
from assistant.database import SessionLocal
from assistant.logging_config import get_logger, setup_logging
from assistant.routers import health, notifications, webhooks
from assistant.services.notification_scheduler import NotificationScheduler

setup_logging(settings.log_level)

scheduler_logger = get_logger("notification_scheduler")


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_scheduler_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("NOTIFICATION_SCHEDULER_ENABLED"), default=settings.notification_scheduler_enabled)


def create_app(context: AppContext | None = None) -> FastAPI:
    app = FastAPI(
        title="Sales & Finance Assistant API",
        description="Chat assistant for leads and personal finance over Telegram, WhatsApp and SMS",
        version="0.1.0",
    )

    cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
    if not cors_origins:
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks.router)
    app.include_router(health.router)
    app.include_router(notifications.router)

    app.state.context = context
    app.state.scheduler = None

    @app.on_event("startup")
    async def start_services() -> None:
        if app.state.context is None:
            app.state.context = build_app_context(settings)
        if not _is_scheduler_enabled():
            return
        app.state.scheduler = NotificationScheduler(app.state.context, SessionLocal)
        app.state.scheduler.start()

    @app.on_event("shutdown")
    async def stop_services() -> None:
        if app.state.scheduler is not None:
            await app.state.scheduler.stop()
            app.state.scheduler = None
        if app.state.context is not None:
            app.state.context.close()
        scheduler_logger.info("Application shutdown complete")

    return app


app = create_app()
