import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from assistant.database import Base
from assistant.models.user import _utcnow


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_accounts_user_id_name"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False, default="Asset")  # see AccountType
    current_balance = Column(Float, nullable=False, default=0.0)
    target_amount = Column(Float)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="accounts")
