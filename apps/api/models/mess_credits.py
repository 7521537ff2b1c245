"""MessCredits model: the per-mess prepaid credits account."""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from database import Base


class MessCredits(Base):
    """Credits balance, trial window and billing policy for one mess.

    Mutated only through ``services.credits``; ``available_credits`` always
    equals ``total_credits - used_credits``.
    """

    __tablename__ = "mess_credits"
    __table_args__ = (
        CheckConstraint("used_credits >= 0", name="ck_mess_credits_used_non_negative"),
        CheckConstraint("available_credits >= 0", name="ck_mess_credits_available_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    mess_id = Column(String, ForeignKey("mess_profiles.id"), nullable=False, unique=True, index=True)
    total_credits = Column(Integer, nullable=False, default=0)
    used_credits = Column(Integer, nullable=False, default=0)
    available_credits = Column(Integer, nullable=False, default=0)

    is_trial_active = Column(Boolean, nullable=False, default=False)
    trial_start_date = Column(DateTime(timezone=True), nullable=True)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)
    trial_credits_used = Column(Integer, nullable=False, default=0)

    auto_renewal = Column(Boolean, nullable=False, default=False)
    low_credit_threshold = Column(Integer, nullable=False, default=100)
    status = Column(String, nullable=False, default="suspended", index=True)

    monthly_user_count = Column(Integer, nullable=False, default=0)
    last_user_count_update = Column(DateTime(timezone=True), nullable=True)
    last_billed_cycle = Column(String, nullable=True)
    last_billing_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
