"""Payment verification workflow: member submits evidence, owner approves or rejects.

Approval is a single unit of work under the per-mess lock: sufficiency check,
membership activation, credit debit and request stamps commit together or
not at all.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.payment_verification import PaymentVerification
from services import memberships
from services.credits import apply_debit, get_account, low_credit_warning, refresh_trial_state, serialize_account, sufficiency
from services.errors import ConflictError, InsufficientCreditsError, InvalidArgumentError, NotFoundError
from services.locks import member_mess_lock, mess_lock
from services.mess_registry import get_meal_plan, get_mess, require_mess_owner
from services.periods import as_utc, utc_now


logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("upi", "cash", "online")
REQUEST_STATUSES = ("pending", "approved", "rejected")
RESOLUTION_STATUSES = ("approved", "rejected")
DUPLICATE_PENDING_MESSAGE = "You already have a pending payment verification for this mess"


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _pending_key(user_id: str, mess_id: str) -> str:
    return f"{user_id}:{mess_id}"


def serialize_request(request: PaymentVerification) -> Dict[str, Any]:
    return {
        "id": request.id,
        "user_id": request.user_id,
        "mess_id": request.mess_id,
        "membership_id": request.membership_id,
        "meal_plan_id": request.meal_plan_id,
        "amount": request.amount,
        "payment_method": request.payment_method,
        "payment_screenshot_ref": request.payment_screenshot_ref,
        "status": request.status,
        "verified_by": request.verified_by,
        "verified_at": _iso(request.verified_at),
        "rejection_reason": request.rejection_reason,
        "created_at": _iso(request.created_at),
        "updated_at": _iso(request.updated_at),
    }


async def _find_pending(user_id: str, mess_id: str, db: AsyncSession) -> Optional[PaymentVerification]:
    result = await db.execute(
        select(PaymentVerification).where(
            PaymentVerification.user_id == user_id,
            PaymentVerification.mess_id == mess_id,
            PaymentVerification.status == "pending",
        )
    )
    return result.scalars().first()


async def submit(
    *,
    user_id: str,
    mess_id: str,
    meal_plan_id: str,
    amount: int,
    payment_method: str,
    screenshot_ref: Optional[str],
    db: AsyncSession,
) -> PaymentVerification:
    """Create a pending request together with its ``pending_verification`` membership."""
    if payment_method not in PAYMENT_METHODS:
        raise InvalidArgumentError(
            f"Invalid payment method. Expected one of: {', '.join(PAYMENT_METHODS)}",
        )
    if int(amount) <= 0:
        raise InvalidArgumentError("amount must be greater than 0")

    await get_mess(mess_id, db)
    await get_meal_plan(meal_plan_id, db, mess_id=mess_id)

    async with member_mess_lock(user_id, mess_id):
        if await _find_pending(user_id, mess_id, db):
            raise ConflictError(DUPLICATE_PENDING_MESSAGE)

        now = utc_now()
        membership = memberships.new_pending_membership(
            user_id=user_id,
            mess_id=mess_id,
            meal_plan_id=meal_plan_id,
            amount=int(amount),
            payment_method=payment_method,
        )
        request = PaymentVerification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            mess_id=mess_id,
            membership_id=membership.id,
            meal_plan_id=meal_plan_id,
            amount=int(amount),
            payment_method=payment_method,
            payment_screenshot_ref=(screenshot_ref or None),
            status="pending",
            pending_key=_pending_key(user_id, mess_id),
            updated_at=now,
        )
        db.add(membership)
        db.add(request)
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise ConflictError(DUPLICATE_PENDING_MESSAGE) from exc

    logger.info(
        "payment_verification_submitted id=%s user=%s mess=%s amount=%s method=%s",
        request.id,
        user_id,
        mess_id,
        amount,
        payment_method,
    )
    return request


async def _get_request(request_id: str, db: AsyncSession, *, for_update: bool = False) -> Optional[PaymentVerification]:
    query = select(PaymentVerification).where(PaymentVerification.id == request_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def resolve(
    request_id: str,
    *,
    status: str,
    verified_by: str,
    db: AsyncSession,
    rejection_reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Approve or reject a pending request exactly once.

    Raises ``InvalidArgumentError`` for a bad status or a rejection without
    a reason, ``NotFoundError`` when the request is missing or already
    resolved, and ``InsufficientCreditsError`` (with nothing mutated) when
    the mess cannot afford another active member.
    """
    if status not in RESOLUTION_STATUSES:
        raise InvalidArgumentError("Invalid status. Must be 'approved' or 'rejected'")
    reason = (rejection_reason or "").strip()
    if status == "rejected" and not reason:
        raise InvalidArgumentError("Rejection reason is required when rejecting a payment verification")

    request = await _get_request(request_id, db)
    if request is None:
        raise NotFoundError("Payment verification not found or already resolved")
    mess_id = request.mess_id
    await require_mess_owner(mess_id, verified_by, db)

    debited: Optional[Dict[str, Any]] = None
    account = None
    async with mess_lock(mess_id):
        try:
            request = await _get_request(request_id, db, for_update=True)
            if request is None or request.status != "pending":
                raise NotFoundError("Payment verification not found or already resolved")

            membership = await memberships.get_membership(request.membership_id, db)
            now = utc_now()

            if status == "approved":
                account = await get_account(mess_id, db, for_update=True)
                refresh_trial_state(account, now)
                check = sufficiency(account, now)
                if not check["sufficient"]:
                    raise InsufficientCreditsError(
                        check["required"],
                        check["available"],
                        message=(
                            f"Insufficient credits to approve this user. You need {check['required']} "
                            f"credits but only have {check['available']} available. "
                            "Please purchase more credits to continue."
                        ),
                    )
                plan = await get_meal_plan(request.meal_plan_id, db)
                memberships.activate(membership, plan, now)
                if check["required"] > 0:
                    entry = await apply_debit(
                        account,
                        db,
                        amount=check["required"],
                        reason=f"Member approved: payment verification {request.id}",
                        reference_type="payment_verification",
                        reference_id=request.id,
                        processed_by=verified_by,
                        metadata={"user_id": request.user_id, "membership_id": membership.id},
                    )
                    debited = {"credits_deducted": check["required"], "transaction_id": entry.id}
                else:
                    debited = {"credits_deducted": 0, "transaction_id": None, "trial_waived": True}
            else:
                memberships.reject(membership)
                request.rejection_reason = reason

            request.status = status
            request.verified_by = verified_by
            request.verified_at = now
            request.updated_at = now
            request.pending_key = None
            membership.updated_at = now
            await db.commit()
        except InsufficientCreditsError as exc:
            await db.rollback()
            logger.warning(
                "payment_verification_refused id=%s mess=%s required=%s available=%s",
                request_id,
                mess_id,
                exc.required_credits,
                exc.available_credits,
            )
            raise
        except Exception:
            await db.rollback()
            raise

    logger.info("payment_verification_resolved id=%s status=%s by=%s", request.id, status, verified_by)
    payload: Dict[str, Any] = {
        "request": serialize_request(request),
        "membership": memberships.serialize_membership(membership),
    }
    if account is not None:
        payload["credits"] = {
            **(debited or {}),
            "account": serialize_account(account),
            "low_credit_warning": low_credit_warning(account),
        }
    return payload


async def list_for_owner(
    mess_id: str,
    owner_id: str,
    db: AsyncSession,
    *,
    status_filter: Optional[str] = None,
) -> List[PaymentVerification]:
    await require_mess_owner(mess_id, owner_id, db)
    query = select(PaymentVerification).where(PaymentVerification.mess_id == mess_id)
    if status_filter:
        if status_filter not in REQUEST_STATUSES:
            raise InvalidArgumentError(f"Invalid status filter: {status_filter}")
        query = query.where(PaymentVerification.status == status_filter)
    result = await db.execute(query.order_by(PaymentVerification.created_at.desc()))
    return list(result.scalars().all())


async def list_for_user(user_id: str, db: AsyncSession) -> List[PaymentVerification]:
    result = await db.execute(
        select(PaymentVerification)
        .where(PaymentVerification.user_id == user_id)
        .order_by(PaymentVerification.updated_at.desc(), PaymentVerification.created_at.desc())
    )
    return list(result.scalars().all())


async def get_stats(mess_id: str, owner_id: str, db: AsyncSession) -> Dict[str, int]:
    await require_mess_owner(mess_id, owner_id, db)
    result = await db.execute(
        select(PaymentVerification.status, func.count(PaymentVerification.id))
        .where(PaymentVerification.mess_id == mess_id)
        .group_by(PaymentVerification.status)
    )
    counts = {row[0]: int(row[1] or 0) for row in result.all()}
    stats = {key: counts.get(key, 0) for key in REQUEST_STATUSES}
    stats["total"] = sum(stats.values())
    return stats
