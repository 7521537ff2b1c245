"""Member leave records used for bill proration."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user_leave import UserLeave
from services.errors import InvalidArgumentError, NotFoundError
from services.mess_registry import get_meal_plan, get_mess, require_mess_owner


logger = logging.getLogger(__name__)

LEAVE_STATUSES = ("pending", "approved", "rejected")


def serialize_leave(leave: UserLeave) -> Dict[str, Any]:
    return {
        "id": leave.id,
        "user_id": leave.user_id,
        "mess_id": leave.mess_id,
        "meal_plan_id": leave.meal_plan_id,
        "start_date": leave.start_date.isoformat(),
        "end_date": leave.end_date.isoformat(),
        "days": (leave.end_date - leave.start_date).days + 1,
        "status": leave.status,
        "reason": leave.reason,
    }


async def request_leave(
    *,
    user_id: str,
    mess_id: str,
    start_date: date,
    end_date: date,
    db: AsyncSession,
    meal_plan_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> UserLeave:
    if end_date < start_date:
        raise InvalidArgumentError("end_date cannot be before start_date")
    await get_mess(mess_id, db)
    if meal_plan_id:
        await get_meal_plan(meal_plan_id, db, mess_id=mess_id)

    leave = UserLeave(
        id=str(uuid.uuid4()),
        user_id=user_id,
        mess_id=mess_id,
        meal_plan_id=meal_plan_id or None,
        start_date=start_date,
        end_date=end_date,
        status="pending",
        reason=(reason or None),
    )
    db.add(leave)
    await db.commit()
    logger.info("leave_requested id=%s user=%s mess=%s %s..%s", leave.id, user_id, mess_id, start_date, end_date)
    return leave


async def decide_leave(leave_id: str, owner_id: str, db: AsyncSession, *, status: str) -> UserLeave:
    """Owner approves or rejects a pending leave."""
    if status not in ("approved", "rejected"):
        raise InvalidArgumentError("Invalid status. Must be 'approved' or 'rejected'")
    result = await db.execute(select(UserLeave).where(UserLeave.id == leave_id))
    leave = result.scalar_one_or_none()
    if leave is None or leave.status != "pending":
        raise NotFoundError("Leave not found or already decided", data={"leave_id": leave_id})
    await require_mess_owner(leave.mess_id, owner_id, db)

    leave.status = status
    await db.commit()
    logger.info("leave_decided id=%s status=%s by=%s", leave_id, status, owner_id)
    return leave


async def list_leaves(
    mess_id: str,
    owner_id: str,
    db: AsyncSession,
    *,
    status_filter: Optional[str] = None,
) -> List[UserLeave]:
    await require_mess_owner(mess_id, owner_id, db)
    query = select(UserLeave).where(UserLeave.mess_id == mess_id)
    if status_filter:
        if status_filter not in LEAVE_STATUSES:
            raise InvalidArgumentError(f"Invalid status filter: {status_filter}")
        query = query.where(UserLeave.status == status_filter)
    result = await db.execute(query.order_by(UserLeave.start_date.desc()))
    return list(result.scalars().all())
