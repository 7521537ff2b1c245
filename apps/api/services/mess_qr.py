"""Signed mess QR tokens for membership attestation.

The signature covers only ``messId`` and ``timestamp``: the token proves the
QR was issued for this mess, and membership is always looked up live.
Tokens do not expire; owners revoke or force-regenerate them.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import logging
from io import BytesIO
from typing import Any, Dict

import qrcode
from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import require_qr_secret
from models.mess_profile import MessProfile
from services.memberships import describe_active_member
from services.mess_registry import require_mess_owner
from services.periods import utc_now


logger = logging.getLogger(__name__)

VERIFICATION_TYPE = "membership_check"
INVALID_QR_MESSAGE = "Invalid QR code"


class QRTokenPayload(BaseModel):
    """Wire format printed into the QR image."""

    model_config = ConfigDict(extra="ignore")

    messId: StrictStr
    messName: StrictStr
    verificationType: StrictStr
    timestamp: StrictInt
    signature: StrictStr


def create_signature(mess_id: str, timestamp: int) -> str:
    message = f"{mess_id}:{timestamp}".encode("utf-8")
    return hmac.new(require_qr_secret(), message, hashlib.sha256).hexdigest()


def verify_signature(mess_id: str, timestamp: int, signature: str) -> bool:
    expected = create_signature(mess_id, timestamp)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def encode_token(mess_id: str, mess_name: str, timestamp: int) -> str:
    payload = {
        "messId": mess_id,
        "messName": mess_name,
        "verificationType": VERIFICATION_TYPE,
        "timestamp": int(timestamp),
        "signature": create_signature(mess_id, int(timestamp)),
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def render_qr_image(data: str) -> str:
    """Render ``data`` into a PNG data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


async def issue(
    mess_id: str,
    owner_id: str,
    db: AsyncSession,
    *,
    force_regenerate: bool = False,
) -> Dict[str, Any]:
    """Return the cached mess QR, or mint and persist a new one."""
    mess = await require_mess_owner(mess_id, owner_id, db)

    if mess.qr_code_image and mess.qr_code_data and not force_regenerate:
        return {
            "qr_code": mess.qr_code_image,
            "qr_code_data": mess.qr_code_data,
            "expires_at": None,
            "is_new": False,
        }

    now = utc_now()
    timestamp = int(now.timestamp() * 1000)
    data = encode_token(mess.id, mess.name, timestamp)
    image = await asyncio.to_thread(render_qr_image, data)

    mess.qr_code_image = image
    mess.qr_code_data = data
    mess.qr_code_generated_at = now
    await db.commit()
    logger.info("mess_qr_issued mess=%s timestamp=%s forced=%s", mess.id, timestamp, force_regenerate)

    return {
        "qr_code": image,
        "qr_code_data": data,
        "expires_at": None,
        "is_new": True,
    }


async def revoke(mess_id: str, owner_id: str, db: AsyncSession) -> Dict[str, Any]:
    mess = await require_mess_owner(mess_id, owner_id, db)
    mess.qr_code_image = None
    mess.qr_code_data = None
    mess.qr_code_generated_at = None
    await db.commit()
    logger.info("mess_qr_revoked mess=%s", mess_id)
    return {"success": True, "message": "QR code deleted successfully"}


def _invalid() -> Dict[str, Any]:
    return {"is_valid": False, "message": INVALID_QR_MESSAGE}


async def verify_by_scannee(qr_code_data: str, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Check a scanned mess QR and the scanning user's live membership."""
    try:
        token = QRTokenPayload.model_validate_json(qr_code_data)
    except (ValidationError, ValueError):
        return _invalid()

    if token.verificationType != VERIFICATION_TYPE:
        return _invalid()
    if not verify_signature(token.messId, token.timestamp, token.signature):
        logger.warning("mess_qr_signature_mismatch user=%s", user_id)
        return _invalid()

    result = await db.execute(select(MessProfile).where(MessProfile.id == token.messId))
    mess = result.scalar_one_or_none()
    if mess is None:
        return _invalid()

    member = await describe_active_member(user_id, mess.id, db)
    if member is None:
        return {
            "is_valid": False,
            "mess": {"id": mess.id, "name": mess.name},
            "message": f"You do not have an active membership at {mess.name}",
        }
    return {
        "is_valid": True,
        "mess": {"id": mess.id, "name": mess.name},
        "member": member,
        "message": f"Welcome {member['name'] or 'member'}! You have {len(member['active_plans'])} active plan(s).",
    }


async def verify_by_owner(mess_id: str, owner_id: str, target_user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Owner-initiated manual membership check; no token involved."""
    mess = await require_mess_owner(mess_id, owner_id, db)
    member = await describe_active_member(target_user_id, mess.id, db)
    if member is None:
        return {"is_valid": False, "message": "User does not have an active membership"}
    return {
        "is_valid": True,
        "member": member,
        "message": f"Member verified: {member['name'] or target_user_id}",
    }
