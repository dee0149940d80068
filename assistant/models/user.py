import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from assistant.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("platform", "platform_id", name="uq_users_platform_platform_id"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    platform = Column(Text, nullable=False)  # telegram, whatsapp, sms
    platform_id = Column(Text, nullable=False)
    username = Column(Text, unique=True)
    name = Column(Text)
    services = Column(Text, nullable=False, default="sales,finance")
    is_active = Column(Boolean, nullable=False, default=True)
    is_setup_complete = Column(Boolean, nullable=False, default=False)
    notification_platform = Column(Text)
    enable_morning_notification = Column(Boolean, nullable=False, default=False)
    enable_evening_notification = Column(Boolean, nullable=False, default=False)
    morning_notification_time = Column(Text)  # HH:MM
    evening_notification_time = Column(Text)
    timezone = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    leads = relationship("Lead", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    accounts = relationship("Account", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
