from typing import Any, Optional

import httpx

from assistant.logging_config import get_logger
from assistant.services.errors import MessagingError
from assistant.services.messaging.base import IncomingMessage, MessagingProvider

logger = get_logger("messaging.telegram")


class TelegramProvider(MessagingProvider):
    """Telegram Bot API."""

    name = "telegram"
    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout_seconds: float = 30.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Make request to Telegram API."""
        if not self.configured:
            raise MessagingError("TELEGRAM_BOT_TOKEN not configured")
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, json=data or {})
                result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Telegram API error: {exc}")
            raise MessagingError(f"Telegram {method} failed: {exc}") from exc

        if not result.get("ok"):
            logger.error(f"Telegram API error: {result.get('description')}")
            raise MessagingError(f"Telegram {method} failed: {result.get('description')}")
        return result

    def send_message(self, chat_id: str, text: str) -> None:
        self._make_request("sendMessage", {"chat_id": chat_id, "text": text, "parse_mode": "Markdown"})

    def set_webhook(self, url: str) -> dict:
        return self._make_request("setWebhook", {"url": url, "allowed_updates": ["message"]})

    def get_webhook_info(self) -> dict:
        return self._make_request("getWebhookInfo")

    def parse_webhook(self, body: Any) -> Optional[IncomingMessage]:
        if not isinstance(body, dict):
            return None
        message = body.get("message")
        if not isinstance(message, dict) or not message.get("text"):
            return None
        try:
            chat_id = message["chat"]["id"]
            sender = message["from"]
        except (KeyError, TypeError):
            return None
        return self.incoming(
            chat_id,
            message["text"],
            sender.get("id"),
            username=sender.get("username"),
            first_name=sender.get("first_name"),
            last_name=sender.get("last_name"),
        )
