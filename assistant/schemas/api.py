from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class WebhookResponse(BaseModel):
    success: bool
    message: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    services: dict[str, str]
    stats: dict[str, int]


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    platform: str
    username: Optional[str] = None
    name: Optional[str] = None
    services: str
    is_setup_complete: bool
    created_at: datetime
    lead_count: int = 0
    transaction_count: int = 0


class UsersResponse(BaseModel):
    users: list[UserSummary]


class NotificationUser(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    platform: str
    services: str
    enable_morning_notification: bool
    enable_evening_notification: bool
    morning_notification_time: Optional[str] = None
    evening_notification_time: Optional[str] = None


class NotificationUsersResponse(BaseModel):
    users: list[NotificationUser]


class NotificationTestRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))
    type: Optional[str] = None


class NotificationTestResponse(BaseModel):
    success: bool
    message: str
    status: Optional[Literal["sent", "failed"]] = None


class CronResponse(BaseModel):
    success: bool
    time: str
    morning_count: int
    evening_count: int
    failed_count: int
