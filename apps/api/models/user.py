"""User account model."""

from sqlalchemy import CheckConstraint, Column, String, DateTime, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """Authenticated account holding the spendable credit balance."""

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("credits_remaining >= 0", name="ck_users_credits_non_negative"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, nullable=False, index=True)
    credits_remaining = Column(Integer, nullable=False, default=0)
    total_creations = Column(Integer, nullable=False, default=0)
    subscription_status = Column(String, nullable=False, default="free")
    last_creation_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    creations = relationship("Creation", back_populates="user", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="user", cascade="all, delete-orphan")
