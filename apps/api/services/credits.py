"""Credit ledger: per-mess balance, guarded debit/credit and transaction history."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_purchase_plan import CreditPurchasePlan
from models.credit_transaction import CreditTransaction
from models.mess_credits import MessCredits
from models.mess_membership import MessMembership
from services.errors import InsufficientCreditsError, InvalidArgumentError, NotFoundError
from services.locks import mess_lock
from services.periods import as_utc, utc_now


logger = logging.getLogger(__name__)

CREDIT_TYPES = ("purchase", "refund", "adjustment", "trial", "bonus")
TRANSACTION_TYPES = CREDIT_TYPES + ("deduction",)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def serialize_account(account: MessCredits) -> Dict[str, Any]:
    return {
        "mess_id": account.mess_id,
        "total_credits": int(account.total_credits or 0),
        "used_credits": int(account.used_credits or 0),
        "available_credits": int(account.available_credits or 0),
        "is_trial_active": bool(account.is_trial_active),
        "trial_start_date": _iso(account.trial_start_date),
        "trial_end_date": _iso(account.trial_end_date),
        "trial_credits_used": int(account.trial_credits_used or 0),
        "auto_renewal": bool(account.auto_renewal),
        "low_credit_threshold": int(account.low_credit_threshold or 0),
        "status": account.status,
        "monthly_user_count": int(account.monthly_user_count or 0),
        "last_user_count_update": _iso(account.last_user_count_update),
        "last_billed_cycle": account.last_billed_cycle,
        "last_billing_date": _iso(account.last_billing_date),
    }


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "type": entry.type,
        "amount": entry.amount,
        "balance_after": entry.balance_after,
        "description": entry.description,
        "reference_type": entry.reference_type,
        "reference_id": entry.reference_id,
        "processed_by": entry.processed_by,
        "metadata": entry.metadata_json or {},
        "status": entry.status,
        "created_at": _iso(entry.created_at),
    }


async def find_account(mess_id: str, db: AsyncSession, *, for_update: bool = False) -> Optional[MessCredits]:
    query = select(MessCredits).where(MessCredits.mess_id == mess_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_account(mess_id: str, db: AsyncSession, *, for_update: bool = False) -> MessCredits:
    """Return the credits account; never creates one."""
    account = await find_account(mess_id, db, for_update=for_update)
    if not account:
        raise NotFoundError("Mess credits account not found", data={"mess_id": mess_id})
    return account


async def get_or_create_account(mess_id: str, db: AsyncSession) -> MessCredits:
    """Explicit lazy-create path used by trial activation and credit purchase.

    A fresh account has a zero balance, no trial and ``suspended`` status.
    The caller owns the unit of work; this only flushes.
    """
    account = await find_account(mess_id, db, for_update=True)
    if account:
        return account

    account = MessCredits(
        id=str(uuid.uuid4()),
        mess_id=mess_id,
        total_credits=0,
        used_credits=0,
        available_credits=0,
        is_trial_active=False,
        trial_credits_used=0,
        auto_renewal=False,
        low_credit_threshold=max(int(settings.DEFAULT_LOW_CREDIT_THRESHOLD), 0),
        status="suspended",
        monthly_user_count=0,
        last_user_count_update=utc_now(),
    )
    db.add(account)
    await db.flush()
    logger.info("credits_account_created mess=%s", mess_id)
    return account


def trial_in_effect(account: MessCredits, now: Optional[datetime] = None) -> bool:
    if not account.is_trial_active:
        return False
    end = as_utc(account.trial_end_date)
    return end is None or (now or utc_now()) < end


def refresh_trial_state(account: MessCredits, now: Optional[datetime] = None) -> bool:
    """Close an expired trial window. Returns True when the account changed."""
    current = now or utc_now()
    end = as_utc(account.trial_end_date)
    if not account.is_trial_active or end is None or current < end:
        return False
    account.is_trial_active = False
    account.status = "active" if int(account.available_credits or 0) > 0 else "suspended"
    logger.info("trial_expired mess=%s status=%s", account.mess_id, account.status)
    return True


def required_for_one_more(account: MessCredits, now: Optional[datetime] = None) -> int:
    if trial_in_effect(account, now):
        return 0
    return max(int(settings.CREDITS_PER_MEMBER), 0)


def sufficiency(account: MessCredits, now: Optional[datetime] = None) -> Dict[str, Any]:
    required = required_for_one_more(account, now)
    available = int(account.available_credits or 0)
    return {
        "sufficient": available >= required,
        "required": required,
        "available": available,
        "trial_waived": required == 0 and trial_in_effect(account, now),
    }


async def check_sufficient_for_one_more(mess_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Pure read: can the mess afford one more active member right now?"""
    account = await get_account(mess_id, db)
    return sufficiency(account)


def _assert_balance_invariant(account: MessCredits) -> None:
    total = int(account.total_credits or 0)
    used = int(account.used_credits or 0)
    if used < 0 or total - used < 0:
        raise InvalidArgumentError("Ledger operation would leave a negative balance")
    account.available_credits = total - used


async def record_transaction(
    db: AsyncSession,
    account: MessCredits,
    *,
    entry_type: str,
    amount: int,
    description: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    processed_by: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditTransaction:
    entry = CreditTransaction(
        id=str(uuid.uuid4()),
        mess_id=account.mess_id,
        type=entry_type,
        amount=int(amount),
        balance_after=int(account.available_credits or 0),
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        processed_by=processed_by,
        metadata_json=metadata,
        status="completed",
    )
    db.add(entry)
    await db.flush()
    return entry


async def apply_debit(
    account: MessCredits,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    processed_by: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditTransaction:
    """Debit inside the caller's unit of work. The caller holds the mess lock."""
    debit_amount = int(amount)
    if debit_amount <= 0:
        raise InvalidArgumentError("Debit amount must be greater than 0")
    available = int(account.available_credits or 0)
    if debit_amount > available:
        raise InsufficientCreditsError(debit_amount, available)

    account.used_credits = int(account.used_credits or 0) + debit_amount
    _assert_balance_invariant(account)
    entry = await record_transaction(
        db,
        account,
        entry_type="deduction",
        amount=-debit_amount,
        description=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        processed_by=processed_by,
        metadata=metadata,
    )
    logger.info(
        "credits_debited mess=%s amount=%s available=%s reason=%s",
        account.mess_id,
        debit_amount,
        account.available_credits,
        reason,
    )
    return entry


async def apply_credit(
    account: MessCredits,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    entry_type: str = "purchase",
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    processed_by: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditTransaction:
    """Credit inside the caller's unit of work. The caller holds the mess lock."""
    credit_amount = int(amount)
    if credit_amount <= 0:
        raise InvalidArgumentError("Credit amount must be greater than 0")
    if entry_type not in CREDIT_TYPES:
        raise InvalidArgumentError(f"Unsupported credit type: {entry_type}")

    account.total_credits = int(account.total_credits or 0) + credit_amount
    _assert_balance_invariant(account)
    if account.status == "suspended" and not trial_in_effect(account):
        account.status = "active"
    entry = await record_transaction(
        db,
        account,
        entry_type=entry_type,
        amount=credit_amount,
        description=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        processed_by=processed_by,
        metadata=metadata,
    )
    logger.info(
        "credits_added mess=%s type=%s amount=%s available=%s",
        account.mess_id,
        entry_type,
        credit_amount,
        account.available_credits,
    )
    return entry


async def debit(
    mess_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    processed_by: Optional[str] = None,
) -> Dict[str, Any]:
    async with mess_lock(mess_id):
        try:
            account = await get_account(mess_id, db, for_update=True)
            entry = await apply_debit(
                account,
                db,
                amount=amount,
                reason=reason,
                reference_type=reference_type,
                reference_id=reference_id,
                processed_by=processed_by,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return {
        "account": serialize_account(account),
        "transaction": serialize_transaction(entry),
        "low_credit_warning": low_credit_warning(account),
    }


async def credit(
    mess_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    entry_type: str = "purchase",
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    processed_by: Optional[str] = None,
) -> Dict[str, Any]:
    async with mess_lock(mess_id):
        try:
            account = await get_account(mess_id, db, for_update=True)
            entry = await apply_credit(
                account,
                db,
                amount=amount,
                reason=reason,
                entry_type=entry_type,
                reference_type=reference_type,
                reference_id=reference_id,
                processed_by=processed_by,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return {
        "account": serialize_account(account),
        "transaction": serialize_transaction(entry),
    }


async def toggle_auto_renewal(mess_id: str, db: AsyncSession, *, enabled: bool) -> MessCredits:
    account = await get_account(mess_id, db)
    if bool(account.auto_renewal) != bool(enabled):
        account.auto_renewal = bool(enabled)
        await db.commit()
        logger.info("auto_renewal_toggled mess=%s enabled=%s", mess_id, enabled)
    return account


def low_credit_warning(account: MessCredits) -> Optional[Dict[str, Any]]:
    """Warning object when the balance is under the threshold; never blocks."""
    available = int(account.available_credits or 0)
    threshold = int(account.low_credit_threshold or 0)
    if available >= threshold:
        return None
    critical = available <= threshold * float(settings.CRITICAL_CREDIT_RATIO)
    if available == 0:
        message = "Your credit balance is zero. You cannot accept new members until you purchase more credits."
    elif critical:
        message = f"Your credit balance ({available} credits) is critically low. Please purchase credits immediately."
    else:
        message = f"Your credit balance ({available} credits) is below the threshold ({threshold} credits)."
    return {
        "is_low": True,
        "critical": critical,
        "available_credits": available,
        "threshold": threshold,
        "message": message,
    }


async def count_active_members(mess_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(MessMembership.id)).where(
            MessMembership.mess_id == mess_id,
            MessMembership.status == "active",
        )
    )
    return int(result.scalar() or 0)


async def check_low_credits(mess_id: str, db: AsyncSession) -> Dict[str, Any]:
    account = await get_account(mess_id, db)
    available = int(account.available_credits or 0)
    threshold = int(account.low_credit_threshold or 0)
    cycle_cost = await count_active_members(mess_id, db) * max(int(settings.CREDITS_PER_MEMBER), 0)
    estimated = math.floor(available / cycle_cost) if cycle_cost > 0 else None
    warning = low_credit_warning(account)
    return {
        "is_low": warning is not None,
        "critical": bool(warning and warning["critical"]),
        "available_credits": available,
        "threshold": threshold,
        "estimated_cycles_remaining": estimated,
    }


async def get_credit_summary(mess_id: str, db: AsyncSession) -> Dict[str, Any]:
    account = await get_account(mess_id, db)
    if refresh_trial_state(account):
        await db.commit()
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.mess_id == mess_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(10)
    )
    entries = result.scalars().all()
    return {
        "account": serialize_account(account),
        "credits_per_member": max(int(settings.CREDITS_PER_MEMBER), 0),
        "active_members": await count_active_members(mess_id, db),
        "low_credit_warning": low_credit_warning(account),
        "recent_transactions": [serialize_transaction(entry) for entry in entries],
    }


async def get_billing_history(
    mess_id: str,
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 20,
    entry_type: Optional[str] = None,
) -> Dict[str, Any]:
    page = max(int(page), 1)
    limit = max(1, min(int(limit), 100))
    if entry_type is not None and entry_type not in TRANSACTION_TYPES:
        raise InvalidArgumentError(f"Unknown transaction type: {entry_type}")

    filters = [CreditTransaction.mess_id == mess_id, CreditTransaction.status == "completed"]
    if entry_type:
        filters.append(CreditTransaction.type == entry_type)

    total_result = await db.execute(select(func.count(CreditTransaction.id)).where(*filters))
    total = int(total_result.scalar() or 0)
    result = await db.execute(
        select(CreditTransaction)
        .where(*filters)
        .order_by(CreditTransaction.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "transactions": [serialize_transaction(entry) for entry in result.scalars().all()],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


async def get_credit_usage_report(
    mess_id: str,
    db: AsyncSession,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    account = await get_account(mess_id, db)
    filters = [CreditTransaction.mess_id == mess_id, CreditTransaction.status == "completed"]
    if start is not None:
        filters.append(CreditTransaction.created_at >= start)
    if end is not None:
        filters.append(CreditTransaction.created_at <= end)

    result = await db.execute(
        select(
            CreditTransaction.type,
            func.coalesce(func.sum(CreditTransaction.amount), 0),
            func.count(CreditTransaction.id),
        )
        .where(*filters)
        .group_by(CreditTransaction.type)
    )
    summary = {row[0]: {"total_amount": int(row[1] or 0), "count": int(row[2] or 0)} for row in result.all()}

    added = sum(
        item["total_amount"]
        for entry_type, item in summary.items()
        if entry_type in ("purchase", "refund", "bonus", "adjustment") and item["total_amount"] > 0
    )
    used = abs(summary.get("deduction", {}).get("total_amount", 0))
    return {
        "total_credits_added": added,
        "total_credits_used": used,
        "current_balance": int(account.available_credits or 0),
        "transaction_summary": summary,
    }


async def purchase_credits(
    mess_id: str,
    db: AsyncSession,
    *,
    plan_id: str,
    payment_reference: Optional[str] = None,
    purchased_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Credit a purchase plan's credits, creating the account on first purchase."""
    result = await db.execute(select(CreditPurchasePlan).where(CreditPurchasePlan.id == plan_id))
    plan = result.scalar_one_or_none()
    if not plan or not plan.is_active:
        raise NotFoundError("Invalid or inactive credit plan", data={"plan_id": plan_id})

    async with mess_lock(mess_id):
        try:
            account = await get_or_create_account(mess_id, db)
            entry = await apply_credit(
                account,
                db,
                amount=plan.total_credits,
                reason=f"Credit purchase - {plan.name}",
                entry_type="purchase",
                reference_type="credit_purchase_plan",
                reference_id=payment_reference or plan.id,
                processed_by=purchased_by,
                metadata={"plan_id": plan.id, "price": plan.price},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return {
        "account": serialize_account(account),
        "transaction": serialize_transaction(entry),
        "credits_added": plan.total_credits,
    }


async def adjust_credits(
    mess_id: str,
    db: AsyncSession,
    *,
    amount: int,
    description: str,
    processed_by: str,
) -> Dict[str, Any]:
    """Admin correction: positive amounts credit, negative amounts debit."""
    delta = int(amount)
    if delta == 0:
        raise InvalidArgumentError("Adjustment amount must be non-zero")

    async with mess_lock(mess_id):
        try:
            account = await get_account(mess_id, db, for_update=True)
            if delta > 0:
                entry = await apply_credit(
                    account,
                    db,
                    amount=delta,
                    reason=description,
                    entry_type="adjustment",
                    processed_by=processed_by,
                )
            else:
                entry = await apply_debit(
                    account,
                    db,
                    amount=abs(delta),
                    reason=description,
                    reference_type="adjustment",
                    processed_by=processed_by,
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return {"account": serialize_account(account), "transaction": serialize_transaction(entry)}


def serialize_plan(plan: CreditPurchasePlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description,
        "base_credits": plan.base_credits,
        "bonus_credits": plan.bonus_credits,
        "total_credits": plan.total_credits,
        "price": plan.price,
        "is_active": bool(plan.is_active),
        "is_popular": bool(plan.is_popular),
    }


async def create_purchase_plan(
    db: AsyncSession,
    *,
    name: str,
    base_credits: int,
    price: int,
    bonus_credits: int = 0,
    description: Optional[str] = None,
    is_popular: bool = False,
    created_by: Optional[str] = None,
) -> CreditPurchasePlan:
    if int(base_credits) <= 0:
        raise InvalidArgumentError("base_credits must be greater than 0")
    if int(price) < 0 or int(bonus_credits) < 0:
        raise InvalidArgumentError("price and bonus_credits cannot be negative")
    plan = CreditPurchasePlan(
        id=str(uuid.uuid4()),
        name=name,
        description=description,
        base_credits=int(base_credits),
        bonus_credits=int(bonus_credits),
        price=int(price),
        is_active=True,
        is_popular=bool(is_popular),
        created_by=created_by,
    )
    db.add(plan)
    await db.commit()
    return plan


async def list_purchase_plans(db: AsyncSession, *, active_only: bool = True) -> list[CreditPurchasePlan]:
    query = select(CreditPurchasePlan).order_by(CreditPurchasePlan.price.asc())
    if active_only:
        query = query.where(CreditPurchasePlan.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


async def deactivate_purchase_plan(plan_id: str, db: AsyncSession) -> CreditPurchasePlan:
    result = await db.execute(select(CreditPurchasePlan).where(CreditPurchasePlan.id == plan_id))
    plan = result.scalar_one_or_none()
    if not plan:
        raise NotFoundError("Credit plan not found", data={"plan_id": plan_id})
    plan.is_active = False
    await db.commit()
    return plan
