import json
import time
from typing import Optional

from assistant.logging_config import get_logger, redact_id

logger = get_logger("conversation_history")

HISTORY_KEY_PREFIX = "conversation"
DEFAULT_MAX_MESSAGES = 20
DEFAULT_TTL_SECONDS = 7200
NO_HISTORY_TEXT = "No recent conversation history."


def history_key(user_id) -> str:
    return f"{HISTORY_KEY_PREFIX}:{user_id}"


def format_time_ago(timestamp_ms: int, now_ms: Optional[int] = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    seconds = max(0, (now_ms - timestamp_ms) // 1000)
    if seconds < 60:
        return "less than a minute ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"about {hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


class ConversationHistory:
    """Rolling per-user chat transcript kept in the cache for prompt context.

    History is best-effort: failures are logged and never interrupt a reply.
    Reading the history extends its TTL so active users keep their context.
    """

    def __init__(
        self,
        cache,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock=time.time,
    ):
        self.cache = cache
        self.max_messages = max_messages
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def add_message(self, user_id, role: str, content: str, context: Optional[str] = None) -> None:
        key = history_key(user_id)
        try:
            existing = self.cache.get(key)
            history = json.loads(existing) if existing else None
            if not isinstance(history, dict):
                history = {"messages": [], "last_activity": self._now_ms(), "message_count": 0}

            now_ms = self._now_ms()
            history["messages"].append(
                {"role": role, "content": content, "timestamp": now_ms, "context": context}
            )
            history["messages"] = history["messages"][-self.max_messages:]
            history["last_activity"] = now_ms
            history["message_count"] = int(history.get("message_count", 0)) + 1

            self.cache.setex(key, self.ttl_seconds, json.dumps(history, ensure_ascii=False))
        except Exception as exc:
            logger.warning(
                f"Failed to add conversation message: {exc}",
                extra={"context": {"user_id": redact_id(user_id)}},
            )

    def get_history(self, user_id) -> Optional[dict]:
        key = history_key(user_id)
        try:
            payload = self.cache.get(key)
            if not payload:
                return None
            history = json.loads(payload)
            self.cache.expire(key, self.ttl_seconds)
            return history if isinstance(history, dict) else None
        except Exception as exc:
            logger.warning(
                f"Failed to get conversation history: {exc}",
                extra={"context": {"user_id": redact_id(user_id)}},
            )
            return None

    def get_context_messages(self, user_id, count: int = 10) -> str:
        history = self.get_history(user_id)
        if not history or not history.get("messages"):
            return NO_HISTORY_TEXT

        now_ms = self._now_ms()
        lines = ["RECENT CONVERSATION HISTORY:"]
        for message in history["messages"][-count:]:
            context_tag = f" [{message['context']}]" if message.get("context") else ""
            time_ago = format_time_ago(message.get("timestamp", now_ms), now_ms)
            lines.append(f"{message['role'].upper()}{context_tag} ({time_ago}): {message['content']}")
        return "\n".join(lines) + "\n\n"

    def get_stats(self, user_id) -> Optional[dict]:
        history = self.get_history(user_id)
        if not history:
            return None
        breakdown: dict[str, int] = {}
        for message in history.get("messages", []):
            context = message.get("context") or "general"
            breakdown[context] = breakdown.get(context, 0) + 1
        return {
            "total_messages": history.get("message_count", 0),
            "last_activity": history.get("last_activity"),
            "context_breakdown": breakdown,
        }

    def is_recently_active(self, user_id, within_minutes: int = 30) -> bool:
        history = self.get_history(user_id)
        if not history:
            return False
        cutoff_ms = self._now_ms() - within_minutes * 60 * 1000
        return history.get("last_activity", 0) > cutoff_ms

    def clear_history(self, user_id) -> None:
        self.cache.delete(history_key(user_id))
