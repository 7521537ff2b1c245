"""Mess billing router: bill preview, pending bills and cycle close."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services import billing
from services.billing_queue import enqueue_monthly_billing
from services.mess_registry import get_mess, require_mess_owner

router = APIRouter()
logger = logging.getLogger(__name__)


async def _authorize(mess_id: str, auth: AuthContext, db: AsyncSession) -> None:
    if auth.is_admin:
        await get_mess(mess_id, db)
        return
    await require_mess_owner(mess_id, auth.user_id, db)


@router.get("/{mess_id}/preview")
async def bill_preview(
    mess_id: str,
    reference: Optional[date] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(mess_id, auth, db)
    return await billing.calculate_monthly_bill(mess_id, db, reference=reference)


@router.post("/{mess_id}/generate", status_code=201)
async def generate_bill(
    mess_id: str,
    reference: Optional[date] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(mess_id, auth, db)
    bill = await billing.generate_pending_bill(mess_id, db, reference=reference)
    return {"bill": billing.serialize_bill(bill)}


@router.post("/{mess_id}/pay")
async def pay_bill(
    mess_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(mess_id, auth, db)
    return await billing.pay_pending_bill(mess_id, db)


@router.post("/{mess_id}/process")
async def process_cycle(
    mess_id: str,
    background: bool = Query(default=False),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(mess_id, auth, db)
    if background:
        try:
            job = enqueue_monthly_billing(mess_id)
        except Exception as exc:
            logger.exception("Failed to enqueue monthly billing for mess %s", mess_id)
            raise HTTPException(status_code=503, detail="Billing queue is unavailable.") from exc
        return {"queued": True, "job_id": job.id}
    return await billing.process_mess_monthly_bill(mess_id, db)


@router.get("/{mess_id}/bills")
async def bills(
    mess_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(mess_id, auth, db)
    items = await billing.list_bills(mess_id, db)
    return {"bills": [billing.serialize_bill(bill) for bill in items]}
