"""UserLeave model."""

import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, String
from sqlalchemy.sql import func

from database import Base


class UserLeave(Base):
    """A member's leave window; approved days reduce the amount billed."""

    __tablename__ = "user_leaves"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    mess_id = Column(String, ForeignKey("mess_profiles.id"), nullable=False, index=True)
    meal_plan_id = Column(String, ForeignKey("meal_plans.id"), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
