"""CreditPurchasePlan model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from database import Base


class CreditPurchasePlan(Base):
    """Purchasable bundle of credits managed by platform admins."""

    __tablename__ = "credit_purchase_plans"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    base_credits = Column(Integer, nullable=False)
    bonus_credits = Column(Integer, nullable=False, default=0)
    price = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_popular = Column(Boolean, nullable=False, default=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def total_credits(self) -> int:
        return int(self.base_credits or 0) + int(self.bonus_credits or 0)
