"""PaymentVerification model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from database import Base


class PaymentVerification(Base):
    """Member-submitted payment evidence awaiting owner approval.

    ``pending_key`` is ``"<user_id>:<mess_id>"`` while the request is pending
    and NULL afterwards; its unique index allows one pending request per pair.
    """

    __tablename__ = "payment_verifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    mess_id = Column(String, ForeignKey("mess_profiles.id"), nullable=False, index=True)
    membership_id = Column(String, ForeignKey("mess_memberships.id"), nullable=False, index=True)
    meal_plan_id = Column(String, ForeignKey("meal_plans.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    payment_method = Column(String, nullable=False)
    payment_screenshot_ref = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending", index=True)
    pending_key = Column(String, nullable=True, unique=True)
    verified_by = Column(String, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
