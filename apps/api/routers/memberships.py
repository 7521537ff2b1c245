"""Membership and leave router."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_member_scope, get_auth_context
from services import leaves, memberships

router = APIRouter()


class LeaveRequest(BaseModel):
    user_id: Optional[str] = None
    mess_id: str
    meal_plan_id: Optional[str] = None
    start_date: date
    end_date: date
    reason: Optional[str] = Field(default=None, max_length=500)


class LeaveDecisionRequest(BaseModel):
    status: str


@router.get("/stats/{mess_id}")
async def membership_stats(
    mess_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await memberships.get_membership_stats(mess_id, auth.user_id, db)


@router.put("/{membership_id}/deactivate")
async def deactivate(
    membership_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    membership = await memberships.deactivate_membership(membership_id, auth.user_id, db)
    return {"membership": memberships.serialize_membership(membership)}


@router.post("/leaves", status_code=201)
async def request_leave(
    request: LeaveRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_member_scope(auth.user_id, request.user_id)
    leave = await leaves.request_leave(
        user_id=scoped_user_id,
        mess_id=request.mess_id,
        meal_plan_id=request.meal_plan_id,
        start_date=request.start_date,
        end_date=request.end_date,
        reason=request.reason,
        db=db,
    )
    return {"leave": leaves.serialize_leave(leave)}


@router.get("/leaves")
async def list_leaves(
    mess_id: str = Query(...),
    status: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    items = await leaves.list_leaves(mess_id, auth.user_id, db, status_filter=status)
    return {"leaves": [leaves.serialize_leave(leave) for leave in items]}


@router.put("/leaves/{leave_id}")
async def decide_leave(
    leave_id: str,
    request: LeaveDecisionRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    leave = await leaves.decide_leave(leave_id, auth.user_id, db, status=request.status)
    return {"leave": leaves.serialize_leave(leave)}
