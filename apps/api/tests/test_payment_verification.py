import asyncio
import uuid

import pytest
from sqlalchemy import select

from models.mess_membership import MessMembership
from models.payment_verification import PaymentVerification
from models.user import User
from services import payment_verification as verification
from services.credits import get_account
from services.errors import (
    ConflictError,
    ForbiddenError,
    InsufficientCreditsError,
    InvalidArgumentError,
    NotFoundError,
)


async def _submit(mess, db, *, user_id=None, amount=1500, method="upi"):
    user_id = user_id or f"user-{uuid.uuid4().hex[:8]}"
    db.add(User(id=user_id, email=f"{user_id}@example.com", name="Ravi"))
    await db.commit()
    return await verification.submit(
        user_id=user_id,
        mess_id=mess.mess_id,
        meal_plan_id=mess.plan_id,
        amount=amount,
        payment_method=method,
        screenshot_ref="https://files.example.com/receipts/abc.png",
        db=db,
    )


@pytest.mark.asyncio
async def test_approval_activates_membership_and_debits_credits(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    request = await _submit(mess, db)
    assert request.status == "pending"

    result = await verification.resolve(request.id, status="approved", verified_by=mess.owner_id, db=db)

    assert result["request"]["status"] == "approved"
    assert result["request"]["verified_by"] == mess.owner_id
    assert result["membership"]["status"] == "active"
    assert result["membership"]["payment_status"] == "paid"
    assert result["membership"]["subscription_end_date"] is not None
    assert result["credits"]["credits_deducted"] == 1

    account = await get_account(mess.mess_id, db)
    assert account.used_credits == 1
    assert account.available_credits == 9

    stored = await db.get(PaymentVerification, request.id)
    assert stored.pending_key is None


@pytest.mark.asyncio
async def test_trial_approval_debits_nothing(seed_mess, db):
    mess = await seed_mess(available_credits=0, trial_days=7)
    request = await _submit(mess, db)

    result = await verification.resolve(request.id, status="approved", verified_by=mess.owner_id, db=db)

    assert result["membership"]["status"] == "active"
    assert result["credits"]["credits_deducted"] == 0
    assert result["credits"]["trial_waived"] is True


@pytest.mark.asyncio
async def test_reject_without_reason_mutates_nothing(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    request = await _submit(mess, db)

    with pytest.raises(InvalidArgumentError):
        await verification.resolve(request.id, status="rejected", verified_by=mess.owner_id, db=db)
    with pytest.raises(InvalidArgumentError):
        await verification.resolve(
            request.id, status="rejected", verified_by=mess.owner_id, db=db, rejection_reason="   "
        )

    await db.refresh(request)
    assert request.status == "pending"
    membership = await db.get(MessMembership, request.membership_id)
    await db.refresh(membership)
    assert membership.status == "pending_verification"


@pytest.mark.asyncio
async def test_rejection_records_reason(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    request = await _submit(mess, db)

    result = await verification.resolve(
        request.id,
        status="rejected",
        verified_by=mess.owner_id,
        db=db,
        rejection_reason="Screenshot is unreadable",
    )

    assert result["request"]["status"] == "rejected"
    assert result["request"]["rejection_reason"] == "Screenshot is unreadable"
    assert result["membership"]["status"] == "rejected"
    assert result["membership"]["payment_status"] == "failed"
    assert "credits" not in result
    account = await get_account(mess.mess_id, db)
    assert account.available_credits == 10


@pytest.mark.asyncio
async def test_second_resolve_is_not_found_and_changes_nothing(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    request = await _submit(mess, db)
    request_id = request.id
    await verification.resolve(request_id, status="approved", verified_by=mess.owner_id, db=db)

    with pytest.raises(NotFoundError):
        await verification.resolve(request_id, status="approved", verified_by=mess.owner_id, db=db)
    with pytest.raises(NotFoundError):
        await verification.resolve(
            request_id, status="rejected", verified_by=mess.owner_id, db=db, rejection_reason="late"
        )

    account = await get_account(mess.mess_id, db)
    assert account.used_credits == 1


@pytest.mark.asyncio
async def test_only_owner_can_resolve(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    request = await _submit(mess, db)

    with pytest.raises(ForbiddenError):
        await verification.resolve(request.id, status="approved", verified_by="someone-else", db=db)


@pytest.mark.asyncio
async def test_duplicate_pending_submission_conflicts(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    first = await _submit(mess, db)

    with pytest.raises(ConflictError):
        await verification.submit(
            user_id=first.user_id,
            mess_id=mess.mess_id,
            meal_plan_id=mess.plan_id,
            amount=1500,
            payment_method="cash",
            screenshot_ref=None,
            db=db,
        )

    rows = await db.execute(
        select(PaymentVerification).where(
            PaymentVerification.user_id == first.user_id,
            PaymentVerification.status == "pending",
        )
    )
    assert len(rows.scalars().all()) == 1


@pytest.mark.asyncio
async def test_resubmission_allowed_after_resolution(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    first = await _submit(mess, db)
    await verification.resolve(
        first.id, status="rejected", verified_by=mess.owner_id, db=db, rejection_reason="Wrong amount"
    )

    second = await verification.submit(
        user_id=first.user_id,
        mess_id=mess.mess_id,
        meal_plan_id=mess.plan_id,
        amount=1500,
        payment_method="cash",
        screenshot_ref=None,
        db=db,
    )

    assert second.status == "pending"
    mine = await verification.list_for_user(first.user_id, db)
    assert {item.id for item in mine} == {first.id, second.id}


@pytest.mark.asyncio
async def test_invalid_payment_method_is_rejected(seed_mess, db):
    mess = await seed_mess(available_credits=10)

    with pytest.raises(InvalidArgumentError):
        await _submit(mess, db, method="cheque")


@pytest.mark.asyncio
async def test_insufficient_credits_leaves_request_pending(seed_mess, db):
    mess = await seed_mess(available_credits=0)
    request = await _submit(mess, db)
    request_id = request.id

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await verification.resolve(request_id, status="approved", verified_by=mess.owner_id, db=db)

    assert exc_info.value.required_credits == 1
    assert exc_info.value.available_credits == 0
    stored = await db.get(PaymentVerification, request_id)
    await db.refresh(stored)
    assert stored.status == "pending"
    assert stored.pending_key is not None


@pytest.mark.asyncio
async def test_concurrent_approvals_never_overspend(seed_mess, session_maker, db):
    mess = await seed_mess(available_credits=1)
    requests = [await _submit(mess, db) for _ in range(5)]

    async def _approve(request_id):
        async with session_maker() as session:
            return await verification.resolve(request_id, status="approved", verified_by=mess.owner_id, db=session)

    outcomes = await asyncio.gather(*(_approve(r.id) for r in requests), return_exceptions=True)

    successes = [o for o in outcomes if isinstance(o, dict)]
    refusals = [o for o in outcomes if isinstance(o, InsufficientCreditsError)]
    assert len(successes) == 1
    assert len(refusals) == 4

    async with session_maker() as session:
        account = await get_account(mess.mess_id, session)
        assert account.used_credits == 1
        assert account.available_credits == 0
        active = await session.execute(
            select(MessMembership).where(
                MessMembership.mess_id == mess.mess_id,
                MessMembership.status == "active",
            )
        )
        assert len(active.scalars().all()) == 1


@pytest.mark.asyncio
async def test_stats_and_owner_listing(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    approved = await _submit(mess, db)
    rejected = await _submit(mess, db)
    await _submit(mess, db)
    await verification.resolve(approved.id, status="approved", verified_by=mess.owner_id, db=db)
    await verification.resolve(
        rejected.id, status="rejected", verified_by=mess.owner_id, db=db, rejection_reason="Blurry"
    )

    stats = await verification.get_stats(mess.mess_id, mess.owner_id, db)
    assert stats == {"pending": 1, "approved": 1, "rejected": 1, "total": 3}

    pending = await verification.list_for_owner(mess.mess_id, mess.owner_id, db, status_filter="pending")
    assert len(pending) == 1

    with pytest.raises(ForbiddenError):
        await verification.list_for_owner(mess.mess_id, "intruder", db)


@pytest.mark.asyncio
async def test_member_listing_puts_latest_update_first(seed_mess, db):
    first_mess = await seed_mess(available_credits=10)
    second_mess = await seed_mess(available_credits=10)
    older = await _submit(first_mess, db)
    user_id = older.user_id
    older_id = older.id
    newer = await verification.submit(
        user_id=user_id,
        mess_id=second_mess.mess_id,
        meal_plan_id=second_mess.plan_id,
        amount=1500,
        payment_method="cash",
        screenshot_ref=None,
        db=db,
    )
    newer_id = newer.id

    before = await verification.list_for_user(user_id, db)
    assert [item.id for item in before] == [newer_id, older_id]

    await verification.resolve(older_id, status="approved", verified_by=first_mess.owner_id, db=db)

    after = await verification.list_for_user(user_id, db)
    assert [item.id for item in after] == [older_id, newer_id]
    assert after[0].status == "approved"
