import re
from typing import Any, Optional

from sqlalchemy.orm import Session

from assistant.logging_config import LoggerAdapter, get_logger, redact_id
from assistant.services import user_service
from assistant.services.conversation_service import ConversationService
from assistant.services.messaging import IncomingMessage
from assistant.services.result import ErrorCode, Result

logger = get_logger("message_router")

ERROR_REPLY = '❌ Sorry, I encountered an error. Please try again or say "help" for assistance.'
_USERNAME_TOKEN = re.compile(r"^[A-Za-z0-9_]{3,}$")


def extract_username(text: str) -> Optional[str]:
    """A message that is a single username-like token, lowercased."""
    trimmed = (text or "").strip()
    return trimmed.lower() if _USERNAME_TOKEN.match(trimmed) else None


def route_incoming(ctx, db: Session, platform: str, body: Any) -> Result[Optional[str]]:
    """Parse a webhook payload, answer it and send the reply on the same platform.

    Returns the reply text, or None when the payload held no text message.
    """
    provider = ctx.messenger(platform)
    if provider is None:
        return Result.failure(f"Unsupported platform: {platform}", ErrorCode.UNSUPPORTED_PLATFORM)

    incoming: Optional[IncomingMessage] = provider.parse_webhook(body)
    if incoming is None:
        logger.info("No valid message in webhook", extra={"context": {"platform": platform}})
        return Result.success(None)

    log = LoggerAdapter(logger, {"platform": platform, "sender": redact_id(incoming.user_id)})
    log.info(f"Processing message: {incoming.text[:50]}")
    try:
        user = user_service.find_or_create_user(db, platform, incoming.user_id)

        username = extract_username(incoming.text)
        if username:
            owner = user_service.get_user_by_username(db, username)
            if owner is not None and owner.id != user.id:
                reply = f"That username belongs to someone else! You're identified by your {platform} account."
                provider.send_message(incoming.chat_id, reply)
                return Result.success(reply)

        reply = ConversationService(ctx).process_message(db, user.id, incoming.text)
        provider.send_message(incoming.chat_id, reply)
        log.info(
            "Message processed successfully",
            context={"user_id": redact_id(user.id), "response_length": len(reply)},
        )
        return Result.success(reply)
    except Exception as exc:
        db.rollback()
        log.error(f"Message processing failed: {exc}", exc_info=exc)
        _send_error_reply(provider, incoming, log)
        return Result.failure(str(exc), ErrorCode.PROCESSING_ERROR)


def _send_error_reply(provider, incoming: IncomingMessage, log: LoggerAdapter) -> None:
    try:
        provider.send_message(incoming.chat_id, ERROR_REPLY)
    except Exception as exc:
        log.error(f"Failed to send error message: {exc}")
