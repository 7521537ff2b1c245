"""Mess QR router: issue, revoke and verify membership attestation codes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services import mess_qr

router = APIRouter()
logger = logging.getLogger(__name__)


class GenerateQRRequest(BaseModel):
    mess_id: str
    force_regenerate: bool = False


class VerifyMembershipRequest(BaseModel):
    qr_code_data: str = Field(min_length=1, max_length=4096)


class OwnerVerifyRequest(BaseModel):
    mess_id: str
    user_id: str


@router.post("/generate")
async def generate_qr(
    request: GenerateQRRequest,
    _rate_limit: None = Depends(rate_limit("qr_generate", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await mess_qr.issue(
        request.mess_id,
        auth.user_id,
        db,
        force_regenerate=request.force_regenerate,
    )


@router.delete("/{mess_id}")
async def revoke_qr(
    mess_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await mess_qr.revoke(mess_id, auth.user_id, db)


@router.post("/verify-membership")
async def verify_membership(
    request: VerifyMembershipRequest,
    _rate_limit: None = Depends(rate_limit("qr_verify", limit=120, window_seconds=60, per_caller=True)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await mess_qr.verify_by_scannee(request.qr_code_data, auth.user_id, db)


@router.post("/verify-member")
async def verify_member(
    request: OwnerVerifyRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await mess_qr.verify_by_owner(request.mess_id, auth.user_id, request.user_id, db)
