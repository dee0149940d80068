from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from assistant.logging_config import get_logger
from assistant.services.clock import utcnow

logger = get_logger("messaging")


@dataclass
class IncomingMessage:
    chat_id: str
    text: str
    user_id: str  # sender id on the platform
    platform: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


class MessagingProvider(ABC):
    """One chat platform: parses its webhook payloads and sends replies."""

    name = "messaging"

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when credentials for sending are present."""

    @abstractmethod
    def send_message(self, chat_id: str, text: str) -> None:
        """Send text to a chat. Raises MessagingError on failure."""

    @abstractmethod
    def parse_webhook(self, body: Any) -> Optional[IncomingMessage]:
        """Extract a text message, or None for payloads we do not handle."""

    def incoming(self, chat_id, text: str, user_id, **metadata) -> IncomingMessage:
        return IncomingMessage(
            chat_id=str(chat_id),
            text=text,
            user_id=str(user_id),
            platform=self.name,
            metadata={key: value for key, value in metadata.items() if value is not None},
        )
