from assistant.schemas.api import (
    CronResponse,
    HealthResponse,
    NotificationTestRequest,
    NotificationTestResponse,
    NotificationUsersResponse,
    UsersResponse,
    WebhookResponse,
)
from assistant.schemas.confirmation import Candidate, ClassifierVerdict, PendingConfirmation

__all__ = [
    "WebhookResponse",
    "HealthResponse",
    "UsersResponse",
    "NotificationUsersResponse",
    "NotificationTestRequest",
    "NotificationTestResponse",
    "CronResponse",
    "Candidate",
    "ClassifierVerdict",
    "PendingConfirmation",
]
