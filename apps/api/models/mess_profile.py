"""MessProfile model with embedded QR attestation token."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class MessProfile(Base):
    """A mess (hostel kitchen) owned by a single user."""

    __tablename__ = "mess_profiles"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    qr_code_image = Column(Text, nullable=True)
    qr_code_data = Column(Text, nullable=True)
    qr_code_generated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("User", back_populates="owned_messes")
    meal_plans = relationship("MealPlan", back_populates="mess")
