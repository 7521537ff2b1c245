"""Billing calculator: plan pricing, leave-day proration, pending bills and cycle close."""

from __future__ import annotations

import logging
import math
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.meal_plan import MealPlan
from models.mess_bill import MessBill
from models.mess_membership import MessMembership
from models.user_leave import UserLeave
from services.credits import apply_debit, find_account, get_account, refresh_trial_state, serialize_account, trial_in_effect
from services.errors import ConflictError, NotFoundError
from services.locks import mess_lock
from services.mess_registry import get_mess
from services.periods import BillingCycle, as_utc, cycle_for, overlap_days, utc_now


logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _pending_key(mess_id: str, cycle_key: str) -> str:
    return f"{mess_id}:{cycle_key}"


def prorated_leave_credit(plan_amount: int, leave_days: int, days_in_cycle: int) -> int:
    """Leave credit for ``leave_days`` of a cycle, floored so the payer is never over-credited."""
    if plan_amount <= 0 or leave_days <= 0 or days_in_cycle <= 0:
        return 0
    days = min(int(leave_days), int(days_in_cycle))
    return math.floor(int(plan_amount) * days / int(days_in_cycle))


async def _active_memberships(mess_id: str, db: AsyncSession) -> List[Tuple[MessMembership, MealPlan]]:
    result = await db.execute(
        select(MessMembership, MealPlan)
        .join(MealPlan, MealPlan.id == MessMembership.meal_plan_id)
        .where(
            MessMembership.mess_id == mess_id,
            MessMembership.status == "active",
        )
        .order_by(MessMembership.created_at.asc())
    )
    return [(row[0], row[1]) for row in result.all()]


async def _approved_leaves(mess_id: str, cycle: BillingCycle, db: AsyncSession) -> Dict[str, List[UserLeave]]:
    result = await db.execute(
        select(UserLeave).where(
            UserLeave.mess_id == mess_id,
            UserLeave.status == "approved",
            UserLeave.start_date <= cycle.end,
            UserLeave.end_date >= cycle.start,
        )
    )
    by_user: Dict[str, List[UserLeave]] = defaultdict(list)
    for leave in result.scalars().all():
        by_user[leave.user_id].append(leave)
    return by_user


def _leave_days_for(membership: MessMembership, leaves: List[UserLeave], cycle: BillingCycle) -> int:
    covered: set[date] = set()
    for leave in leaves:
        if leave.meal_plan_id is not None and leave.meal_plan_id != membership.meal_plan_id:
            continue
        if overlap_days(leave.start_date, leave.end_date, cycle.start, cycle.end) <= 0:
            continue
        day = max(leave.start_date, cycle.start)
        last = min(leave.end_date, cycle.end)
        while day <= last:
            covered.add(day)
            day += timedelta(days=1)
    return min(len(covered), cycle.days)


def _is_overdue(membership: MessMembership, now: datetime) -> bool:
    due = as_utc(membership.next_payment_date)
    return membership.payment_status != "paid" and due is not None and due < now


async def calculate_monthly_bill(
    mess_id: str,
    db: AsyncSession,
    *,
    reference: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Bill preview for the cycle containing ``reference`` (defaults to today)."""
    await get_mess(mess_id, db)
    current = now or utc_now()
    cycle = cycle_for(reference or current.date())
    rows = await _active_memberships(mess_id, db)
    leaves = await _approved_leaves(mess_id, cycle, db)
    late_fee_amount = max(int(settings.LATE_FEE_AMOUNT), 0) if settings.LATE_FEE_ENABLED else 0

    breakdown: List[Dict[str, Any]] = []
    base_total = leave_total = late_total = net_total = 0
    for membership, plan in rows:
        base = max(int(plan.price or 0), 0)
        leave_days = _leave_days_for(membership, leaves.get(membership.user_id, []), cycle)
        leave_credit = prorated_leave_credit(base, leave_days, cycle.days) if plan.leave_credit_enabled else 0
        late_fee = late_fee_amount if late_fee_amount and _is_overdue(membership, current) else 0
        net = max(base - leave_credit + late_fee, 0)

        base_total += base
        leave_total += leave_credit
        late_total += late_fee
        net_total += net
        breakdown.append(
            {
                "membership_id": membership.id,
                "user_id": membership.user_id,
                "meal_plan_id": plan.id,
                "plan_name": plan.name,
                "base_amount": base,
                "leave_days": leave_days,
                "leave_credit": leave_credit,
                "late_fee": late_fee,
                "net_due": net,
            }
        )

    return {
        "mess_id": mess_id,
        "cycle_key": cycle.key,
        "cycle_start": cycle.start.isoformat(),
        "cycle_end": cycle.end.isoformat(),
        "days_in_cycle": cycle.days,
        "member_count": len(rows),
        "base_amount": base_total,
        "leave_credit": leave_total,
        "late_fee": late_total,
        "net_due": net_total,
        "breakdown": breakdown,
    }


def serialize_bill(bill: MessBill) -> Dict[str, Any]:
    return {
        "id": bill.id,
        "mess_id": bill.mess_id,
        "cycle_key": bill.cycle_key,
        "cycle_start": bill.cycle_start.isoformat() if bill.cycle_start else None,
        "cycle_end": bill.cycle_end.isoformat() if bill.cycle_end else None,
        "member_count": bill.member_count,
        "base_amount": bill.base_amount,
        "leave_credit": bill.leave_credit,
        "late_fee": bill.late_fee,
        "net_due": bill.net_due,
        "breakdown": bill.breakdown_json or [],
        "status": bill.status,
        "paid_at": _iso(bill.paid_at),
        "last_payment_date": _iso(bill.last_payment_date),
        "next_payment_date": _iso(bill.next_payment_date),
        "created_at": _iso(bill.created_at),
    }


async def generate_pending_bill(
    mess_id: str,
    db: AsyncSession,
    *,
    reference: Optional[date] = None,
) -> MessBill:
    """Snapshot the current preview as a pending bill; one unpaid bill per cycle.

    The mess row is locked before the duplicate check, and ``pending_key``
    rejects a second pending bill for the cycle at the storage layer.
    """
    async with mess_lock(mess_id):
        try:
            await get_mess(mess_id, db, for_update=True)
            preview = await calculate_monthly_bill(mess_id, db, reference=reference)
            existing = await db.execute(
                select(MessBill.id).where(
                    MessBill.mess_id == mess_id,
                    MessBill.cycle_key == preview["cycle_key"],
                    MessBill.status == "pending",
                )
            )
            if existing.scalar_one_or_none():
                raise ConflictError(
                    "An unpaid bill already exists for this billing cycle",
                    data={"cycle_key": preview["cycle_key"]},
                )

            bill = MessBill(
                id=str(uuid.uuid4()),
                mess_id=mess_id,
                cycle_key=preview["cycle_key"],
                cycle_start=date.fromisoformat(preview["cycle_start"]),
                cycle_end=date.fromisoformat(preview["cycle_end"]),
                member_count=preview["member_count"],
                base_amount=preview["base_amount"],
                leave_credit=preview["leave_credit"],
                late_fee=preview["late_fee"],
                net_due=preview["net_due"],
                breakdown_json=preview["breakdown"],
                status="pending",
                pending_key=_pending_key(mess_id, preview["cycle_key"]),
                created_at=utc_now(),
            )
            db.add(bill)

            account = await find_account(mess_id, db, for_update=True)
            if account is not None:
                account.monthly_user_count = preview["member_count"]
                account.last_user_count_update = utc_now()
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise ConflictError(
                "An unpaid bill already exists for this billing cycle",
                data={"cycle_key": preview["cycle_key"]},
            ) from exc
        except Exception:
            await db.rollback()
            raise

    logger.info("pending_bill_generated mess=%s cycle=%s net_due=%s", mess_id, bill.cycle_key, bill.net_due)
    return bill


async def pay_pending_bill(mess_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Mark the newest pending bill paid and stamp the payment dates it covers."""
    async with mess_lock(mess_id):
        try:
            result = await db.execute(
                select(MessBill)
                .where(MessBill.mess_id == mess_id, MessBill.status == "pending")
                .order_by(MessBill.created_at.desc())
                .limit(1)
                .with_for_update()
            )
            bill = result.scalars().first()
            if bill is None:
                raise NotFoundError("No pending bill to pay", data={"mess_id": mess_id})

            now = utc_now()
            next_due = now + timedelta(days=max(int(settings.BILLING_CYCLE_DAYS), 1))
            bill.status = "paid"
            bill.pending_key = None
            bill.paid_at = now
            bill.last_payment_date = now
            bill.next_payment_date = next_due

            membership_ids = [line["membership_id"] for line in (bill.breakdown_json or [])]
            covered = 0
            if membership_ids:
                members = await db.execute(
                    select(MessMembership).where(
                        MessMembership.id.in_(membership_ids),
                        MessMembership.status == "active",
                    )
                )
                for membership in members.scalars().all():
                    membership.payment_status = "paid"
                    membership.last_payment_date = now
                    membership.next_payment_date = next_due
                    covered += 1

            account = await find_account(mess_id, db, for_update=True)
            if account is not None:
                account.last_billing_date = now
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("pending_bill_paid mess=%s bill=%s members=%s", mess_id, bill.id, covered)
    return {"bill": serialize_bill(bill), "memberships_updated": covered}


async def process_mess_monthly_bill(
    mess_id: str,
    db: AsyncSession,
    *,
    reference: Optional[date] = None,
) -> Dict[str, Any]:
    """Close a billing cycle once.

    With auto-renewal the mess is charged the per-member credit cost for
    every active membership and those memberships roll forward as paid;
    otherwise (or when credits run short) each membership is flagged
    ``payment_status = pending``. Re-invoking for a closed cycle is a no-op.
    """
    async with mess_lock(mess_id):
        try:
            account = await get_account(mess_id, db, for_update=True)
            now = utc_now()
            cycle = cycle_for(reference or now.date())
            refresh_trial_state(account, now)

            if account.last_billed_cycle == cycle.key:
                await db.commit()
                return {
                    "processed": False,
                    "reason": "already_billed",
                    "cycle_key": cycle.key,
                    "account": serialize_account(account),
                }
            if trial_in_effect(account, now):
                await db.commit()
                return {
                    "processed": False,
                    "reason": "trial_active",
                    "cycle_key": cycle.key,
                    "account": serialize_account(account),
                }

            preview = await calculate_monthly_bill(mess_id, db, reference=cycle.start, now=now)
            rows = await _active_memberships(mess_id, db)
            per_member = max(int(settings.CREDITS_PER_MEMBER), 0)
            total_cost = per_member * len(rows)

            auto_charged = 0
            flagged = 0
            credits_deducted = 0
            next_due = now + timedelta(days=max(int(settings.BILLING_CYCLE_DAYS), 1))
            charge = bool(account.auto_renewal) and int(account.available_credits or 0) >= total_cost

            if charge and total_cost > 0:
                await apply_debit(
                    account,
                    db,
                    amount=total_cost,
                    reason=f"Monthly billing {cycle.key}: {len(rows)} members @ {per_member} credits",
                    reference_type="billing_cycle",
                    reference_id=cycle.key,
                    metadata={"member_count": len(rows), "net_due": preview["net_due"]},
                )
                credits_deducted = total_cost

            for membership, _plan in rows:
                if charge:
                    membership.payment_status = "paid"
                    membership.last_payment_date = now
                    membership.next_payment_date = next_due
                    auto_charged += 1
                else:
                    membership.payment_status = "pending"
                    flagged += 1

            if account.auto_renewal and not charge:
                account.status = "suspended"
                logger.warning(
                    "auto_renewal_failed mess=%s required=%s available=%s",
                    mess_id,
                    total_cost,
                    account.available_credits,
                )
            elif charge:
                account.status = "active"

            account.last_billed_cycle = cycle.key
            account.last_billing_date = now
            account.monthly_user_count = len(rows)
            account.last_user_count_update = now
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info(
        "monthly_bill_processed mess=%s cycle=%s charged=%s flagged=%s credits=%s",
        mess_id,
        cycle.key,
        auto_charged,
        flagged,
        credits_deducted,
    )
    return {
        "processed": True,
        "cycle_key": cycle.key,
        "auto_charged": auto_charged,
        "flagged_pending": flagged,
        "credits_deducted": credits_deducted,
        "bill": preview,
        "account": serialize_account(account),
    }


async def list_bills(mess_id: str, db: AsyncSession) -> List[MessBill]:
    result = await db.execute(
        select(MessBill).where(MessBill.mess_id == mess_id).order_by(MessBill.created_at.desc())
    )
    return list(result.scalars().all())
