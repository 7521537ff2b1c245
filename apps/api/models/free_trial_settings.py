"""FreeTrialSettings model (single global row)."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from database import Base


GLOBAL_SETTINGS_ID = "global"


class FreeTrialSettings(Base):
    """Platform-wide free trial switch and defaults."""

    __tablename__ = "free_trial_settings"

    id = Column(String, primary_key=True, default=GLOBAL_SETTINGS_ID)
    is_globally_enabled = Column(Boolean, nullable=False, default=True)
    default_trial_duration_days = Column(Integer, nullable=False, default=7)
    trial_credits = Column(Integer, nullable=False, default=100)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
