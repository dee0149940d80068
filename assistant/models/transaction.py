import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from assistant.database import Base
from assistant.models.user import _utcnow


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    amount = Column(Float, nullable=False)  # negative for money out
    category = Column(Text, nullable=False)  # see TransactionCategory
    babylon_principle = Column(Text)
    date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user = relationship("User", back_populates="transactions")
