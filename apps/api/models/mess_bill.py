"""MessBill model: persisted snapshot of a billing cycle."""

import uuid

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from database import Base


class MessBill(Base):
    """Bill preview frozen for one mess and cycle."""

    __tablename__ = "mess_bills"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    mess_id = Column(String, ForeignKey("mess_profiles.id"), nullable=False, index=True)
    cycle_key = Column(String, nullable=False, index=True)
    cycle_start = Column(Date, nullable=False)
    cycle_end = Column(Date, nullable=False)
    member_count = Column(Integer, nullable=False, default=0)
    base_amount = Column(Integer, nullable=False, default=0)
    leave_credit = Column(Integer, nullable=False, default=0)
    late_fee = Column(Integer, nullable=False, default=0)
    net_due = Column(Integer, nullable=False, default=0)
    breakdown_json = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default="pending", index=True)
    # "<mess_id>:<cycle_key>" while pending, NULL once paid
    pending_key = Column(String, nullable=True, unique=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    next_payment_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
