"""MealPlan model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class MealPlan(Base):
    """Priced meal plan offered by a mess; amounts are in the smallest currency unit."""

    __tablename__ = "meal_plans"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    mess_id = Column(String, ForeignKey("mess_profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False, default=0)
    billing_period = Column(String, nullable=False, default="month")
    leave_credit_enabled = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    mess = relationship("MessProfile", back_populates="meal_plans")
