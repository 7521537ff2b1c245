import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from models.credit_purchase_plan import CreditPurchasePlan
from models.credit_transaction import CreditTransaction
from models.mess_credits import MessCredits
from services import credits as ledger
from services.errors import InsufficientCreditsError, InvalidArgumentError, NotFoundError
from services.periods import utc_now


def _assert_consistent(account: MessCredits) -> None:
    assert account.available_credits == account.total_credits - account.used_credits
    assert account.available_credits >= 0


@pytest.mark.asyncio
async def test_zero_balance_cannot_afford_another_member(seed_mess, db):
    mess = await seed_mess(available_credits=0)

    result = await ledger.check_sufficient_for_one_more(mess.mess_id, db)

    assert result["sufficient"] is False
    assert result["required"] == 1
    assert result["available"] == 0
    assert result["trial_waived"] is False


@pytest.mark.asyncio
async def test_missing_account_is_not_created_on_read(seed_mess, db):
    mess = await seed_mess()

    with pytest.raises(NotFoundError):
        await ledger.check_sufficient_for_one_more(mess.mess_id, db)

    assert await ledger.find_account(mess.mess_id, db) is None


@pytest.mark.asyncio
async def test_active_trial_waives_member_cost(seed_mess, db):
    mess = await seed_mess(available_credits=0, trial_days=7)

    result = await ledger.check_sufficient_for_one_more(mess.mess_id, db)

    assert result == {"sufficient": True, "required": 0, "available": 0, "trial_waived": True}


@pytest.mark.asyncio
async def test_debit_and_credit_keep_balance_consistent(seed_mess, db):
    mess = await seed_mess(available_credits=5)

    debited = await ledger.debit(mess.mess_id, db, amount=3, reason="Member approved")
    assert debited["account"]["available_credits"] == 2
    assert debited["transaction"]["amount"] == -3
    assert debited["transaction"]["balance_after"] == 2

    credited = await ledger.credit(mess.mess_id, db, amount=10, reason="Top up")
    assert credited["account"]["total_credits"] == 15
    assert credited["account"]["used_credits"] == 3
    assert credited["account"]["available_credits"] == 12

    account = await ledger.get_account(mess.mess_id, db)
    _assert_consistent(account)


@pytest.mark.asyncio
async def test_overdraft_is_refused_without_mutation(seed_mess, db):
    mess = await seed_mess(available_credits=2)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await ledger.debit(mess.mess_id, db, amount=5, reason="Too much")

    assert exc_info.value.required_credits == 5
    assert exc_info.value.available_credits == 2
    assert exc_info.value.to_detail()["shortfall"] == 3

    account = await ledger.get_account(mess.mess_id, db)
    assert account.used_credits == 0
    assert account.available_credits == 2
    rows = await db.execute(select(CreditTransaction).where(CreditTransaction.mess_id == mess.mess_id))
    assert rows.scalars().all() == []


@pytest.mark.asyncio
async def test_non_positive_amounts_are_rejected(seed_mess, db):
    mess = await seed_mess(available_credits=2)

    with pytest.raises(InvalidArgumentError):
        await ledger.debit(mess.mess_id, db, amount=0, reason="noop")
    with pytest.raises(InvalidArgumentError):
        await ledger.credit(mess.mess_id, db, amount=-4, reason="noop")


@pytest.mark.asyncio
async def test_expired_trial_is_closed_on_summary(seed_mess, db, session_maker):
    mess = await seed_mess(available_credits=0, trial_days=7)
    async with session_maker() as session:
        account = (await session.execute(select(MessCredits).where(MessCredits.mess_id == mess.mess_id))).scalar_one()
        account.trial_start_date = utc_now() - timedelta(days=10)
        account.trial_end_date = utc_now() - timedelta(days=3)
        await session.commit()

    summary = await ledger.get_credit_summary(mess.mess_id, db)

    assert summary["account"]["is_trial_active"] is False
    assert summary["account"]["status"] == "suspended"
    check = await ledger.check_sufficient_for_one_more(mess.mess_id, db)
    assert check["required"] == 1
    assert check["sufficient"] is False


@pytest.mark.asyncio
async def test_low_credit_warning_flags_critical_balance(seed_mess, db):
    mess = await seed_mess(available_credits=15)

    report = await ledger.check_low_credits(mess.mess_id, db)

    assert report["is_low"] is True
    assert report["critical"] is True
    assert report["threshold"] == 100
    assert report["estimated_cycles_remaining"] is None


@pytest.mark.asyncio
async def test_low_credit_estimates_cycles_from_active_members(seed_mess, add_member, db):
    mess = await seed_mess(available_credits=50)
    await add_member(mess)
    await add_member(mess)

    report = await ledger.check_low_credits(mess.mess_id, db)

    assert report["is_low"] is True
    assert report["critical"] is False
    assert report["estimated_cycles_remaining"] == 25


@pytest.mark.asyncio
async def test_purchase_creates_account_and_reactivates(seed_mess, db):
    mess = await seed_mess()
    plan = await ledger.create_purchase_plan(db, name="Starter", base_credits=100, bonus_credits=20, price=499)

    result = await ledger.purchase_credits(mess.mess_id, db, plan_id=plan.id, payment_reference="pay_123")

    assert result["credits_added"] == 120
    assert result["account"]["available_credits"] == 120
    assert result["account"]["status"] == "active"
    assert result["transaction"]["type"] == "purchase"
    assert result["transaction"]["reference_id"] == "pay_123"


@pytest.mark.asyncio
async def test_purchase_with_inactive_plan_is_not_found(seed_mess, db):
    mess = await seed_mess(available_credits=0)
    plan = CreditPurchasePlan(id=str(uuid.uuid4()), name="Retired", base_credits=10, price=99, is_active=False)
    db.add(plan)
    await db.commit()

    with pytest.raises(NotFoundError):
        await ledger.purchase_credits(mess.mess_id, db, plan_id=plan.id)
    with pytest.raises(NotFoundError):
        await ledger.purchase_credits(mess.mess_id, db, plan_id="missing")


@pytest.mark.asyncio
async def test_adjustments_use_the_same_guards(seed_mess, db):
    mess = await seed_mess(available_credits=3)

    added = await ledger.adjust_credits(mess.mess_id, db, amount=7, description="Goodwill", processed_by="admin-1")
    assert added["account"]["available_credits"] == 10
    assert added["transaction"]["type"] == "adjustment"

    removed = await ledger.adjust_credits(mess.mess_id, db, amount=-4, description="Correction", processed_by="admin-1")
    assert removed["account"]["available_credits"] == 6

    with pytest.raises(InsufficientCreditsError):
        await ledger.adjust_credits(mess.mess_id, db, amount=-50, description="Too much", processed_by="admin-1")
    with pytest.raises(InvalidArgumentError):
        await ledger.adjust_credits(mess.mess_id, db, amount=0, description="Nothing", processed_by="admin-1")


@pytest.mark.asyncio
async def test_history_is_paginated_and_filterable(seed_mess, db):
    mess = await seed_mess(available_credits=10)
    for _ in range(3):
        await ledger.debit(mess.mess_id, db, amount=1, reason="Member approved")
    await ledger.credit(mess.mess_id, db, amount=5, reason="Top up")

    page = await ledger.get_billing_history(mess.mess_id, db, page=1, limit=2)
    assert len(page["transactions"]) == 2
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}

    deductions = await ledger.get_billing_history(mess.mess_id, db, entry_type="deduction")
    assert deductions["pagination"]["total"] == 3
    assert all(item["type"] == "deduction" for item in deductions["transactions"])

    with pytest.raises(InvalidArgumentError):
        await ledger.get_billing_history(mess.mess_id, db, entry_type="bogus")

    usage = await ledger.get_credit_usage_report(mess.mess_id, db)
    assert usage["total_credits_used"] == 3
    assert usage["total_credits_added"] == 5
    assert usage["current_balance"] == 12


@pytest.mark.asyncio
async def test_auto_renewal_toggle_is_idempotent(seed_mess, session_maker, db):
    mess = await seed_mess(available_credits=5)

    account = await ledger.toggle_auto_renewal(mess.mess_id, db, enabled=True)
    assert account.auto_renewal is True

    again = await ledger.toggle_auto_renewal(mess.mess_id, db, enabled=True)
    assert again.auto_renewal is True
    assert again.available_credits == 5

    async with session_maker() as session:
        stored = await ledger.get_account(mess.mess_id, session)
        assert stored.auto_renewal is True
        entries = await session.execute(
            select(CreditTransaction).where(CreditTransaction.mess_id == mess.mess_id)
        )
        assert entries.scalars().all() == []

    off = await ledger.toggle_auto_renewal(mess.mess_id, db, enabled=False)
    assert off.auto_renewal is False
