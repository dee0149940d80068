from typing import Any, Optional

import httpx

from assistant.logging_config import get_logger
from assistant.services.errors import MessagingError
from assistant.services.messaging.base import IncomingMessage, MessagingProvider

logger = get_logger("messaging.whatsapp")


class WhatsAppProvider(MessagingProvider):
    """WhatsApp Cloud API."""

    name = "whatsapp"
    BASE_URL = "https://graph.facebook.com/v18.0/{phone_number_id}/messages"

    def __init__(self, access_token: str, phone_number_id: str, timeout_seconds: float = 30.0):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def send_message(self, chat_id: str, text: str) -> None:
        if not self.configured:
            raise MessagingError("WhatsApp credentials not configured")
        payload = {
            "messaging_product": "whatsapp",
            "to": chat_id,
            "type": "text",
            "text": {"body": text},
        }
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    self.BASE_URL.format(phone_number_id=self.phone_number_id),
                    headers={"Authorization": f"Bearer {self.access_token}"},
                    json=payload,
                )
        except httpx.HTTPError as exc:
            logger.error(f"WhatsApp API error: {exc}")
            raise MessagingError(f"WhatsApp send failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error(f"WhatsApp API error: {response.status_code} - {response.text[:300]}")
            raise MessagingError(f"WhatsApp API error: {response.status_code}")

    def parse_webhook(self, body: Any) -> Optional[IncomingMessage]:
        try:
            value = body["entry"][0]["changes"][0]["value"]
            message = value["messages"][0]
        except (KeyError, IndexError, TypeError):
            return None
        if message.get("type") != "text":
            return None

        contacts = value.get("contacts") or [{}]
        text = (message.get("text") or {}).get("body")
        if not text or not message.get("from"):
            return None
        return self.incoming(
            message["from"],
            text,
            message["from"],
            contact_name=(contacts[0].get("profile") or {}).get("name"),
            message_id=message.get("id"),
        )
