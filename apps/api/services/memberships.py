"""Membership lifecycle: pending_verification -> active | rejected, active <-> inactive."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.meal_plan import MealPlan
from models.mess_membership import MessMembership
from models.user import User
from services.errors import InvalidArgumentError, NotFoundError
from services.mess_registry import require_mess_owner
from services.periods import as_utc, subscription_end_date, utc_now


logger = logging.getLogger(__name__)

MEMBERSHIP_STATUSES = ("pending_verification", "active", "rejected", "inactive")
PAYMENT_STATUSES = ("pending", "paid", "failed")

ALLOWED_TRANSITIONS = {
    "pending_verification": {"active", "rejected"},
    "active": {"inactive"},
    "inactive": {"active"},
    "rejected": set(),
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def serialize_membership(membership: MessMembership) -> Dict[str, Any]:
    return {
        "id": membership.id,
        "user_id": membership.user_id,
        "mess_id": membership.mess_id,
        "meal_plan_id": membership.meal_plan_id,
        "status": membership.status,
        "payment_status": membership.payment_status,
        "payment_amount": membership.payment_amount,
        "payment_method": membership.payment_method,
        "subscription_start_date": _iso(membership.subscription_start_date),
        "subscription_end_date": _iso(membership.subscription_end_date),
        "last_payment_date": _iso(membership.last_payment_date),
        "next_payment_date": _iso(membership.next_payment_date),
    }


def transition(membership: MessMembership, target: str) -> MessMembership:
    """Move ``membership`` to ``target`` or raise on an illegal edge."""
    if target not in MEMBERSHIP_STATUSES:
        raise InvalidArgumentError(f"Unknown membership status: {target}")
    allowed = ALLOWED_TRANSITIONS.get(membership.status, set())
    if target not in allowed:
        raise InvalidArgumentError(
            f"Membership cannot move from {membership.status} to {target}",
            data={"membership_id": membership.id, "status": membership.status},
        )
    previous = membership.status
    membership.status = target
    logger.info("membership_transition id=%s %s->%s", membership.id, previous, target)
    return membership


def new_pending_membership(
    *,
    user_id: str,
    mess_id: str,
    meal_plan_id: str,
    amount: int,
    payment_method: str,
) -> MessMembership:
    return MessMembership(
        id=str(uuid.uuid4()),
        user_id=user_id,
        mess_id=mess_id,
        meal_plan_id=meal_plan_id,
        status="pending_verification",
        payment_status="pending",
        payment_amount=int(amount),
        payment_method=payment_method,
    )


def activate(membership: MessMembership, plan: Optional[MealPlan], now: Optional[datetime] = None) -> MessMembership:
    """Flip to active and stamp the paid subscription window."""
    current = now or utc_now()
    transition(membership, "active")
    period = plan.billing_period if plan is not None else "month"
    end = subscription_end_date(current, period)
    membership.payment_status = "paid"
    membership.payment_verified_at = current
    membership.subscription_start_date = current
    membership.subscription_end_date = end
    membership.last_payment_date = current
    membership.next_payment_date = end + timedelta(milliseconds=1)
    return membership


def reject(membership: MessMembership) -> MessMembership:
    transition(membership, "rejected")
    membership.payment_status = "failed"
    return membership


async def get_membership(membership_id: str, db: AsyncSession) -> MessMembership:
    result = await db.execute(select(MessMembership).where(MessMembership.id == membership_id))
    membership = result.scalar_one_or_none()
    if not membership:
        raise NotFoundError("Membership not found", data={"membership_id": membership_id})
    return membership


async def deactivate_membership(membership_id: str, owner_id: str, db: AsyncSession) -> MessMembership:
    membership = await get_membership(membership_id, db)
    await require_mess_owner(membership.mess_id, owner_id, db)
    transition(membership, "inactive")
    await db.commit()
    return membership


async def list_active_memberships(user_id: str, mess_id: str, db: AsyncSession) -> List[MessMembership]:
    result = await db.execute(
        select(MessMembership)
        .where(
            MessMembership.user_id == user_id,
            MessMembership.mess_id == mess_id,
            MessMembership.status == "active",
        )
        .order_by(MessMembership.subscription_start_date.asc())
    )
    return list(result.scalars().all())


async def describe_active_member(user_id: str, mess_id: str, db: AsyncSession) -> Optional[Dict[str, Any]]:
    """Live lookup of a member's identity and active plans, or None when not active."""
    memberships = await list_active_memberships(user_id, mess_id, db)
    if not memberships:
        return None

    user_result = await db.execute(select(User).where(User.id == user_id))
    user = user_result.scalar_one_or_none()

    plan_ids = {m.meal_plan_id for m in memberships}
    plan_result = await db.execute(select(MealPlan).where(MealPlan.id.in_(plan_ids)))
    plan_names = {plan.id: plan.name for plan in plan_result.scalars().all()}

    return {
        "user_id": user_id,
        "name": user.name if user else None,
        "email": user.email if user else None,
        "member_since": _iso(memberships[0].subscription_start_date),
        "active_plans": [
            {
                "meal_plan_id": m.meal_plan_id,
                "plan_name": plan_names.get(m.meal_plan_id, "Unknown Plan"),
                "start_date": _iso(m.subscription_start_date),
                "end_date": _iso(m.subscription_end_date),
                "status": m.status,
            }
            for m in memberships
        ],
    }


async def get_membership_stats(mess_id: str, owner_id: str, db: AsyncSession) -> Dict[str, int]:
    await require_mess_owner(mess_id, owner_id, db)
    now = utc_now()
    horizon = now + timedelta(days=30)

    total = await db.execute(select(func.count(MessMembership.id)).where(MessMembership.mess_id == mess_id))
    active = await db.execute(
        select(func.count(MessMembership.id)).where(
            MessMembership.mess_id == mess_id,
            MessMembership.status == "active",
        )
    )
    expiring = await db.execute(
        select(func.count(MessMembership.id)).where(
            MessMembership.mess_id == mess_id,
            MessMembership.status == "active",
            MessMembership.subscription_end_date >= now,
            MessMembership.subscription_end_date <= horizon,
        )
    )
    return {
        "total_members": int(total.scalar() or 0),
        "active_members": int(active.scalar() or 0),
        "expiring_soon": int(expiring.scalar() or 0),
    }
