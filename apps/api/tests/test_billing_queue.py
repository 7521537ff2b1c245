from unittest.mock import MagicMock, patch

import pytest

from services import billing_queue
from services.periods import utc_now


def test_enqueue_targets_job_function():
    queue = MagicMock()
    with patch("services.billing_queue.get_billing_queue", return_value=queue):
        billing_queue.enqueue_monthly_billing("mess-1")

    args, kwargs = queue.enqueue.call_args
    assert args == ("services.billing_queue.process_monthly_billing_job", "mess-1")
    assert kwargs["job_timeout"] == 300


@pytest.mark.asyncio
async def test_job_processes_cycle_once(seed_mess, add_member, session_maker):
    mess = await seed_mess(available_credits=4, auto_renewal=True)
    await add_member(mess)

    with patch("services.billing_queue.async_session_maker", session_maker):
        first = await billing_queue.process_monthly_billing_job_async(mess.mess_id)
        second = await billing_queue.process_monthly_billing_job_async(mess.mess_id)

    assert first["processed"] is True
    assert first["credits_deducted"] == 1
    assert first["cycle_key"] == utc_now().strftime("%Y-%m")
    assert second["processed"] is False
    assert second["reason"] == "already_billed"


@pytest.mark.asyncio
async def test_job_reports_missing_account(seed_mess, session_maker):
    mess = await seed_mess()

    with patch("services.billing_queue.async_session_maker", session_maker):
        result = await billing_queue.process_monthly_billing_job_async(mess.mess_id)

    assert result["processed"] is False
    assert result["reason"] == "not_found"


@pytest.mark.asyncio
async def test_enqueue_all_messes_covers_every_account(seed_mess, session_maker):
    first = await seed_mess(available_credits=1)
    second = await seed_mess(available_credits=0)
    await seed_mess()

    with patch("services.billing_queue.async_session_maker", session_maker), patch(
        "services.billing_queue.enqueue_monthly_billing"
    ) as enqueue:
        mess_ids = await billing_queue.enqueue_all_messes()

    assert set(mess_ids) == {first.mess_id, second.mess_id}
    assert enqueue.call_count == 2
