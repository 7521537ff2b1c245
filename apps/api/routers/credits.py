"""Mess credits router."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_admin
from routers.rate_limit import rate_limit
from services import credits as ledger
from services.mess_registry import require_mess_owner

router = APIRouter()
logger = logging.getLogger(__name__)


class AutoRenewalRequest(BaseModel):
    enabled: bool


class PurchaseCreditsRequest(BaseModel):
    plan_id: str
    payment_reference: Optional[str] = Field(default=None, max_length=255)


class AdjustCreditsRequest(BaseModel):
    amount: int
    description: str = Field(min_length=1, max_length=500)


class CreatePlanRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    base_credits: int = Field(ge=1)
    bonus_credits: int = Field(default=0, ge=0)
    price: int = Field(ge=0)
    is_popular: bool = False


@router.get("/plans")
async def list_plans(db: AsyncSession = Depends(get_db)):
    plans = await ledger.list_purchase_plans(db)
    return {"plans": [ledger.serialize_plan(plan) for plan in plans]}


@router.post("/plans", status_code=201)
async def create_plan(
    request: CreatePlanRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    plan = await ledger.create_purchase_plan(
        db,
        name=request.name,
        description=request.description,
        base_credits=request.base_credits,
        bonus_credits=request.bonus_credits,
        price=request.price,
        is_popular=request.is_popular,
        created_by=admin.user_id,
    )
    return {"plan": ledger.serialize_plan(plan)}


@router.delete("/plans/{plan_id}")
async def deactivate_plan(
    plan_id: str,
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    plan = await ledger.deactivate_purchase_plan(plan_id, db)
    return {"plan": ledger.serialize_plan(plan)}


@router.get("/{mess_id}")
async def credits_account(
    mess_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await require_mess_owner(mess_id, auth.user_id, db)
    return await ledger.get_credit_summary(mess_id, db)


@router.post("/check-new-user/{mess_id}")
async def check_new_user(
    mess_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await require_mess_owner(mess_id, auth.user_id, db)
    return await ledger.check_sufficient_for_one_more(mess_id, db)


@router.put("/{mess_id}/auto-renewal")
async def set_auto_renewal(
    mess_id: str,
    request: AutoRenewalRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await require_mess_owner(mess_id, auth.user_id, db)
    account = await ledger.toggle_auto_renewal(mess_id, db, enabled=request.enabled)
    return {"account": ledger.serialize_account(account)}


@router.get("/{mess_id}/history")
async def credit_history(
    mess_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    entry_type: Optional[str] = Query(default=None, alias="type"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await require_mess_owner(mess_id, auth.user_id, db)
    return await ledger.get_billing_history(mess_id, db, page=page, limit=limit, entry_type=entry_type)


@router.get("/{mess_id}/usage")
async def credit_usage(
    mess_id: str,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await require_mess_owner(mess_id, auth.user_id, db)
    return await ledger.get_credit_usage_report(mess_id, db, start=start, end=end)


@router.get("/{mess_id}/low-credits")
async def low_credits(
    mess_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await require_mess_owner(mess_id, auth.user_id, db)
    return await ledger.check_low_credits(mess_id, db)


@router.post("/{mess_id}/purchase")
async def purchase(
    mess_id: str,
    request: PurchaseCreditsRequest,
    _rate_limit: None = Depends(rate_limit("credits_purchase", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await require_mess_owner(mess_id, auth.user_id, db)
    result = await ledger.purchase_credits(
        mess_id,
        db,
        plan_id=request.plan_id,
        payment_reference=request.payment_reference,
        purchased_by=auth.user_id,
    )
    logger.info("Credits purchased for mess %s: +%s", mess_id, result["credits_added"])
    return result


@router.post("/{mess_id}/adjust")
async def adjust(
    mess_id: str,
    request: AdjustCreditsRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await ledger.adjust_credits(
        mess_id,
        db,
        amount=request.amount,
        description=request.description,
        processed_by=admin.user_id,
    )
