"""Free trial router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_admin
from services import free_trial
from services.errors import ConflictError
from services.mess_registry import get_owned_mess

router = APIRouter()
logger = logging.getLogger(__name__)


class ActivateTrialRequest(BaseModel):
    trial_duration_days: Optional[int] = Field(default=None, ge=1, le=90)


class TrialSettingsRequest(BaseModel):
    is_globally_enabled: Optional[bool] = None
    default_trial_duration_days: Optional[int] = Field(default=None, ge=1, le=90)
    trial_credits: Optional[int] = Field(default=None, ge=0)


@router.get("/availability")
async def trial_availability(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    mess = await get_owned_mess(auth.user_id, db)
    return await free_trial.check_availability(mess.id, db)


@router.post("/activate")
async def activate_trial(
    request: Optional[ActivateTrialRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    mess = await get_owned_mess(auth.user_id, db)
    try:
        result = await free_trial.activate(
            mess.id,
            db,
            trial_duration_days=request.trial_duration_days if request else None,
        )
    except ConflictError as exc:
        # Already used / globally disabled are client errors on this endpoint.
        raise HTTPException(status_code=400, detail=exc.to_detail()) from exc

    return {
        "success": True,
        "message": f"Free trial activated for {result['trial_duration_days']} days",
        **result,
    }


@router.get("/settings")
async def trial_settings(
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await free_trial.get_free_trial_settings(db)


@router.put("/settings")
async def update_trial_settings(
    request: TrialSettingsRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await free_trial.update_free_trial_settings(
        db,
        updated_by=admin.user_id,
        is_globally_enabled=request.is_globally_enabled,
        default_trial_duration_days=request.default_trial_duration_days,
        trial_credits=request.trial_credits,
    )
