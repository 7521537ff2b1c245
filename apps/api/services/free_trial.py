"""One-time free trial activation per mess."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.free_trial_settings import GLOBAL_SETTINGS_ID, FreeTrialSettings
from services.credits import find_account, get_or_create_account, serialize_account, record_transaction
from services.errors import ConflictError, InvalidArgumentError
from services.locks import mess_lock
from services.periods import as_utc, utc_now


logger = logging.getLogger(__name__)

TRIAL_UNAVAILABLE_REASON = "Free trial is not currently available"
TRIAL_USED_REASON = "Free trial has already been used"


async def get_free_trial_settings(db: AsyncSession) -> Dict[str, Any]:
    """Persisted trial settings, or configured defaults tagged ``persisted=False``."""
    result = await db.execute(select(FreeTrialSettings).where(FreeTrialSettings.id == GLOBAL_SETTINGS_ID))
    row = result.scalar_one_or_none()
    if row is None:
        return {
            "persisted": False,
            "is_globally_enabled": bool(settings.FREE_TRIAL_ENABLED),
            "default_trial_duration_days": max(int(settings.FREE_TRIAL_DURATION_DAYS), 1),
            "trial_credits": max(int(settings.FREE_TRIAL_CREDITS), 0),
        }
    return {
        "persisted": True,
        "is_globally_enabled": bool(row.is_globally_enabled),
        "default_trial_duration_days": int(row.default_trial_duration_days),
        "trial_credits": int(row.trial_credits),
    }


async def update_free_trial_settings(
    db: AsyncSession,
    *,
    updated_by: str,
    is_globally_enabled: Optional[bool] = None,
    default_trial_duration_days: Optional[int] = None,
    trial_credits: Optional[int] = None,
) -> Dict[str, Any]:
    if default_trial_duration_days is not None and int(default_trial_duration_days) < 1:
        raise InvalidArgumentError("default_trial_duration_days must be at least 1")
    if trial_credits is not None and int(trial_credits) < 0:
        raise InvalidArgumentError("trial_credits cannot be negative")

    current = await get_free_trial_settings(db)
    result = await db.execute(select(FreeTrialSettings).where(FreeTrialSettings.id == GLOBAL_SETTINGS_ID))
    row = result.scalar_one_or_none()
    if row is None:
        row = FreeTrialSettings(
            id=GLOBAL_SETTINGS_ID,
            is_globally_enabled=current["is_globally_enabled"],
            default_trial_duration_days=current["default_trial_duration_days"],
            trial_credits=current["trial_credits"],
        )
        db.add(row)

    if is_globally_enabled is not None:
        row.is_globally_enabled = bool(is_globally_enabled)
    if default_trial_duration_days is not None:
        row.default_trial_duration_days = int(default_trial_duration_days)
    if trial_credits is not None:
        row.trial_credits = int(trial_credits)
    row.updated_by = updated_by
    await db.commit()
    logger.info("free_trial_settings_updated by=%s enabled=%s", updated_by, row.is_globally_enabled)
    return await get_free_trial_settings(db)


async def check_availability(mess_id: str, db: AsyncSession) -> Dict[str, Any]:
    trial_settings = await get_free_trial_settings(db)
    if not trial_settings["is_globally_enabled"]:
        return {"available": False, "reason": TRIAL_UNAVAILABLE_REASON}

    account = await find_account(mess_id, db)
    if account is not None and account.trial_start_date is not None:
        return {
            "available": False,
            "reason": TRIAL_USED_REASON,
            "trial_start_date": as_utc(account.trial_start_date).isoformat(),
            "trial_end_date": as_utc(account.trial_end_date).isoformat() if account.trial_end_date else None,
            "is_trial_active": bool(account.is_trial_active),
        }

    return {
        "available": True,
        "trial_duration_days": trial_settings["default_trial_duration_days"],
    }


async def activate(
    mess_id: str,
    db: AsyncSession,
    *,
    trial_duration_days: Optional[int] = None,
) -> Dict[str, Any]:
    """Grant the one-time trial window. A repeat call raises ``ConflictError``
    carrying the existing window so callers can show it."""
    trial_settings = await get_free_trial_settings(db)
    if not trial_settings["is_globally_enabled"]:
        raise ConflictError(TRIAL_UNAVAILABLE_REASON, data={"reason": "trial_disabled"})

    duration = int(trial_duration_days or trial_settings["default_trial_duration_days"])
    if duration < 1:
        raise InvalidArgumentError("trial_duration_days must be at least 1")

    async with mess_lock(mess_id):
        try:
            account = await get_or_create_account(mess_id, db)
            if account.trial_start_date is not None:
                raise ConflictError(
                    "Free trial has already been used for this mess",
                    data={
                        "reason": "trial_already_used",
                        "trial_start_date": as_utc(account.trial_start_date).isoformat(),
                        "trial_end_date": (
                            as_utc(account.trial_end_date).isoformat() if account.trial_end_date else None
                        ),
                        "is_trial_active": bool(account.is_trial_active),
                    },
                )

            now = utc_now()
            account.is_trial_active = True
            account.trial_start_date = now
            account.trial_end_date = now + timedelta(days=duration)
            account.status = "trial"
            await record_transaction(
                db,
                account,
                entry_type="trial",
                amount=0,
                description=f"Free trial activated - {duration} days",
                metadata={"trial_credits": trial_settings["trial_credits"], "duration_days": duration},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("free_trial_activated mess=%s days=%s", mess_id, duration)
    return {
        "trial_start_date": as_utc(account.trial_start_date).isoformat(),
        "trial_end_date": as_utc(account.trial_end_date).isoformat(),
        "trial_duration_days": duration,
        "is_trial_active": True,
        "status": account.status,
        "account": serialize_account(account),
    }
