from typing import Any, Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from assistant.logging_config import get_logger
from assistant.services.errors import MessagingError
from assistant.services.messaging.base import IncomingMessage, MessagingProvider

logger = get_logger("messaging.sms")


class SMSProvider(MessagingProvider):
    """SMS through Twilio. Inbound messages arrive as form posts."""

    name = "sms"

    def __init__(self, account_sid: str, auth_token: str, phone_number: str, client: Optional[Client] = None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.phone_number = phone_number
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.phone_number)

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def send_message(self, chat_id: str, text: str) -> None:
        if not self.configured:
            raise MessagingError("Twilio credentials not configured")
        try:
            self.client.messages.create(body=text, from_=self.phone_number, to=chat_id)
        except TwilioException as exc:
            logger.error(f"Twilio API error: {exc}")
            raise MessagingError(f"SMS send failed: {exc}") from exc

    def parse_webhook(self, body: Any) -> Optional[IncomingMessage]:
        if not hasattr(body, "get"):
            return None
        text, sender = body.get("Body"), body.get("From")
        if not text or not sender:
            return None
        return self.incoming(
            sender,
            text,
            sender,
            message_id=body.get("MessageSid"),
            account_sid=body.get("AccountSid"),
        )
