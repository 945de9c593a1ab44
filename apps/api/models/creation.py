"""Creation model for logged generation attempts."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Creation(Base):
    """Immutable record of one billed generation attempt."""

    __tablename__ = "creations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)  # text | image | video
    prompt = Column(Text, nullable=False)
    result_url = Column(String, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    cost_credits = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="creations")
