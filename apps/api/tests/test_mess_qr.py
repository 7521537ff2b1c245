import json

import pytest
from sqlalchemy import select

from models.mess_profile import MessProfile
from services import mess_qr
from services.errors import ForbiddenError


def _flip(value: str) -> str:
    last = value[-1]
    replacement = "0" if last != "0" else "1"
    return value[:-1] + replacement


def test_signature_covers_mess_id_and_timestamp():
    signature = mess_qr.create_signature("mess-1", 1760000000000)

    assert len(signature) == 64
    assert mess_qr.verify_signature("mess-1", 1760000000000, signature)
    assert not mess_qr.verify_signature("mess-2", 1760000000000, signature)
    assert not mess_qr.verify_signature("mess-1", 1760000000001, signature)


def test_token_wire_format_is_compact_json():
    data = mess_qr.encode_token("mess-1", "Annapurna Mess", 1760000000000)

    assert data.startswith('{"messId":"mess-1","messName":"Annapurna Mess","verificationType":"membership_check"')
    payload = json.loads(data)
    assert list(payload) == ["messId", "messName", "verificationType", "timestamp", "signature"]
    assert payload["timestamp"] == 1760000000000


@pytest.mark.asyncio
async def test_issue_is_cached_until_forced(seed_mess, db):
    mess = await seed_mess()

    first = await mess_qr.issue(mess.mess_id, mess.owner_id, db)
    assert first["is_new"] is True
    assert first["qr_code"].startswith("data:image/png;base64,")
    assert first["expires_at"] is None

    cached = await mess_qr.issue(mess.mess_id, mess.owner_id, db)
    assert cached["is_new"] is False
    assert cached["qr_code_data"] == first["qr_code_data"]

    forced = await mess_qr.issue(mess.mess_id, mess.owner_id, db, force_regenerate=True)
    assert forced["is_new"] is True


@pytest.mark.asyncio
async def test_only_owner_can_issue(seed_mess, db):
    mess = await seed_mess()

    with pytest.raises(ForbiddenError):
        await mess_qr.issue(mess.mess_id, "not-the-owner", db)


@pytest.mark.asyncio
async def test_active_member_scan_is_valid(seed_mess, add_member, db):
    mess = await seed_mess()
    member = await add_member(mess, name="Ravi")
    issued = await mess_qr.issue(mess.mess_id, mess.owner_id, db)

    result = await mess_qr.verify_by_scannee(issued["qr_code_data"], member.user_id, db)

    assert result["is_valid"] is True
    assert result["mess"]["name"] == "Annapurna Mess"
    assert result["member"]["name"] == "Ravi"
    assert result["member"]["active_plans"][0]["plan_name"] == "Full Meals"


@pytest.mark.asyncio
async def test_non_member_scan_is_rejected(seed_mess, db):
    mess = await seed_mess()
    issued = await mess_qr.issue(mess.mess_id, mess.owner_id, db)

    result = await mess_qr.verify_by_scannee(issued["qr_code_data"], "stranger", db)

    assert result["is_valid"] is False
    assert "member" not in result


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["messId", "timestamp", "signature"])
async def test_single_character_tamper_is_invalid(seed_mess, add_member, db, field):
    mess = await seed_mess()
    member = await add_member(mess)
    issued = await mess_qr.issue(mess.mess_id, mess.owner_id, db)
    payload = json.loads(issued["qr_code_data"])

    if field == "timestamp":
        payload["timestamp"] = payload["timestamp"] + 1
    else:
        payload[field] = _flip(payload[field])
    tampered = json.dumps(payload, separators=(",", ":"))

    result = await mess_qr.verify_by_scannee(tampered, member.user_id, db)

    assert result == {"is_valid": False, "message": "Invalid QR code"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        '{"messId":"x"}',
        '{"messId":"x","messName":"y","verificationType":"membership_check","timestamp":"1","signature":"z"}',
    ],
)
async def test_malformed_payloads_are_invalid(db, raw):
    result = await mess_qr.verify_by_scannee(raw, "anyone", db)

    assert result == {"is_valid": False, "message": "Invalid QR code"}


@pytest.mark.asyncio
async def test_mess_name_is_read_live(seed_mess, add_member, db, session_maker):
    mess = await seed_mess()
    member = await add_member(mess)
    issued = await mess_qr.issue(mess.mess_id, mess.owner_id, db)
    async with session_maker() as session:
        profile = (await session.execute(select(MessProfile).where(MessProfile.id == mess.mess_id))).scalar_one()
        profile.name = "Annapurna Mess (Renamed)"
        await session.commit()

    async with session_maker() as fresh:
        result = await mess_qr.verify_by_scannee(issued["qr_code_data"], member.user_id, fresh)

    assert result["is_valid"] is True
    assert result["mess"]["name"] == "Annapurna Mess (Renamed)"


@pytest.mark.asyncio
async def test_revoke_clears_cached_code(seed_mess, db):
    mess = await seed_mess()
    await mess_qr.issue(mess.mess_id, mess.owner_id, db)

    await mess_qr.revoke(mess.mess_id, mess.owner_id, db)
    again = await mess_qr.issue(mess.mess_id, mess.owner_id, db)

    assert again["is_new"] is True


@pytest.mark.asyncio
async def test_owner_manual_check(seed_mess, add_member, db):
    mess = await seed_mess()
    member = await add_member(mess, name="Meera")

    found = await mess_qr.verify_by_owner(mess.mess_id, mess.owner_id, member.user_id, db)
    missing = await mess_qr.verify_by_owner(mess.mess_id, mess.owner_id, "stranger", db)

    assert found["is_valid"] is True
    assert found["member"]["email"] == f"{member.user_id}@example.com"
    assert missing["is_valid"] is False
