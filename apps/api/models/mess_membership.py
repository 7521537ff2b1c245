"""MessMembership model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class MessMembership(Base):
    """One user's subscription to one meal plan at one mess."""

    __tablename__ = "mess_memberships"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    mess_id = Column(String, ForeignKey("mess_profiles.id"), nullable=False, index=True)
    meal_plan_id = Column(String, ForeignKey("meal_plans.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="pending_verification", index=True)
    payment_status = Column(String, nullable=False, default="pending")
    payment_amount = Column(Integer, nullable=False, default=0)
    payment_method = Column(String, nullable=True)
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    next_payment_date = Column(DateTime(timezone=True), nullable=True)
    payment_verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="memberships")
    meal_plan = relationship("MealPlan")
