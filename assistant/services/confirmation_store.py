from typing import Optional

from pydantic import ValidationError

from assistant.logging_config import get_logger, redact_id
from assistant.schemas.confirmation import PendingConfirmation

logger = get_logger("confirmation_store")

CONFIRMATION_KEY_PREFIX = "confirmation"
DEFAULT_CONFIRMATION_TTL_SECONDS = 300


def confirmation_key(user_id, domain: str) -> str:
    return f"{CONFIRMATION_KEY_PREFIX}:{user_id}:{domain}"


class PendingConfirmationStore:
    """One in-flight duplicate question per (user, domain).

    Cache failures fail open: reads report nothing pending and writes are
    dropped with a warning, so the user falls back to normal conversation.
    """

    def __init__(self, cache, ttl_seconds: int = DEFAULT_CONFIRMATION_TTL_SECONDS):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def store(self, user_id, domain: str, confirmation: PendingConfirmation) -> bool:
        key = confirmation_key(user_id, domain)
        try:
            self.cache.setex(key, self.ttl_seconds, confirmation.model_dump_json())
        except Exception as exc:
            logger.warning(
                f"Pending confirmation store failed: {exc}",
                extra={"context": {"user_id": redact_id(user_id), "domain": domain}},
            )
            return False
        logger.info(
            "Pending confirmation stored",
            extra={"context": {"user_id": redact_id(user_id), "domain": domain, "kind": confirmation.kind}},
        )
        return True

    def get(self, user_id, domain: str) -> Optional[PendingConfirmation]:
        key = confirmation_key(user_id, domain)
        try:
            payload = self.cache.get(key)
        except Exception as exc:
            logger.warning(
                f"Pending confirmation read failed: {exc}",
                extra={"context": {"user_id": redact_id(user_id), "domain": domain}},
            )
            return None
        if not payload:
            return None
        try:
            return PendingConfirmation.model_validate_json(payload)
        except (ValidationError, ValueError) as exc:
            logger.warning(
                f"Discarding corrupt pending confirmation: {exc}",
                extra={"context": {"user_id": redact_id(user_id), "domain": domain}},
            )
            self.clear(user_id, domain)
            return None

    def clear(self, user_id, domain: str) -> None:
        try:
            self.cache.delete(confirmation_key(user_id, domain))
        except Exception as exc:
            logger.warning(
                f"Pending confirmation clear failed: {exc}",
                extra={"context": {"user_id": redact_id(user_id), "domain": domain}},
            )

    def exists(self, user_id, domain: str) -> bool:
        try:
            return self.cache.exists(confirmation_key(user_id, domain))
        except Exception as exc:
            logger.warning(
                f"Pending confirmation exists check failed: {exc}",
                extra={"context": {"user_id": redact_id(user_id), "domain": domain}},
            )
            return False
