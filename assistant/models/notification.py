import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from assistant.database import Base
from assistant.models.user import _utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Text, nullable=False)  # morning, evening
    content = Column(Text, nullable=False)
    platform = Column(Text, nullable=False)
    status = Column(Text, nullable=False)  # sent, failed
    sent_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user = relationship("User", back_populates="notifications")
