from typing import Optional


class AssistantError(Exception):
    """Base class for errors raised by the assistant services."""


class AIProviderError(AssistantError):
    """The AI provider answered with a non-success status."""

    def __init__(self, provider: str, status_code: Optional[int], body: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} API error: {status_code} - {body[:300]}")


class AIResponseError(AssistantError):
    """The AI reply could not be parsed or failed schema validation."""


class InvalidIntentError(AssistantError):
    """The parsed intent is missing data required by its action."""


class EntityNotFoundError(AssistantError):
    """A lead, transaction or account referenced by the user does not exist."""


class MessagingError(AssistantError):
    """A messaging platform rejected an outbound message."""
