"""Payment verification router: members submit proof, owners resolve it."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_member_scope, get_auth_context
from routers.rate_limit import rate_limit
from services import payment_verification as verification
from services.errors import DomainError, InvalidArgumentError

router = APIRouter()
logger = logging.getLogger(__name__)


class SubmitVerificationRequest(BaseModel):
    user_id: Optional[str] = None
    mess_id: Optional[str] = None
    meal_plan_id: Optional[str] = None
    amount: Optional[int] = None
    payment_method: Optional[str] = None
    screenshot_ref: Optional[str] = Field(default=None, max_length=2048)


class ResolveVerificationRequest(BaseModel):
    status: str
    rejection_reason: Optional[str] = Field(default=None, max_length=1000)


@router.post("/submit-verification", status_code=201)
async def submit_verification(
    request: SubmitVerificationRequest,
    _rate_limit: None = Depends(rate_limit("verification_submit", limit=20, window_seconds=3600, per_caller=True)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_member_scope(auth.user_id, request.user_id)
    missing = [
        name
        for name in ("mess_id", "meal_plan_id", "amount", "payment_method")
        if getattr(request, name) in (None, "")
    ]
    if missing:
        raise InvalidArgumentError(
            f"Missing required fields: {', '.join(missing)}",
            data={"missing_fields": missing},
        )

    try:
        created = await verification.submit(
            user_id=scoped_user_id,
            mess_id=request.mess_id,
            meal_plan_id=request.meal_plan_id,
            amount=request.amount,
            payment_method=request.payment_method,
            screenshot_ref=request.screenshot_ref,
            db=db,
        )
    except (HTTPException, DomainError):
        raise
    except Exception as e:
        logger.exception("Payment verification submit failed for user %s", scoped_user_id)
        raise HTTPException(status_code=500, detail=f"Failed to submit payment verification: {str(e)}")

    return {
        "success": True,
        "message": "Payment verification submitted successfully",
        "request": verification.serialize_request(created),
    }


@router.get("/list-verifications")
async def list_verifications(
    mess_id: str = Query(...),
    status: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    requests = await verification.list_for_owner(mess_id, auth.user_id, db, status_filter=status)
    return {"requests": [verification.serialize_request(item) for item in requests]}


@router.put("/resolve-verification/{request_id}")
async def resolve_verification(
    request_id: str,
    request: ResolveVerificationRequest,
    _rate_limit: None = Depends(rate_limit("verification_resolve", limit=120, window_seconds=3600, per_caller=True)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await verification.resolve(
            request_id,
            status=request.status,
            verified_by=auth.user_id,
            db=db,
            rejection_reason=request.rejection_reason,
        )
    except (HTTPException, DomainError):
        raise
    except Exception as e:
        logger.exception("Payment verification %s resolve failed", request_id)
        raise HTTPException(status_code=500, detail=f"Failed to resolve payment verification: {str(e)}")

    return {
        "success": True,
        "message": f"Payment verification {request.status} successfully",
        **result,
    }


@router.get("/my-verifications")
async def my_verifications(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    requests = await verification.list_for_user(auth.user_id, db)
    return {"requests": [verification.serialize_request(item) for item in requests]}


@router.get("/stats/{mess_id}")
async def verification_stats(
    mess_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await verification.get_stats(mess_id, auth.user_id, db)
