import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from assistant.database import Base
from assistant.models.user import _utcnow


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    phone = Column(Text)
    contacted = Column(Boolean, nullable=False, default=False)
    replied = Column(Boolean, nullable=False, default=False)
    interested = Column(Boolean, nullable=False, default=False)
    status = Column(Text, nullable=False, default="New")  # see LeadStatus
    next_step = Column(Text)
    next_followup = Column(DateTime(timezone=True))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="leads")
