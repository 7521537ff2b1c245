import asyncio
from unittest.mock import patch

import pytest

from services import locks


@pytest.mark.asyncio
async def test_idle_locks_are_dropped_after_release():
    async with locks.mess_lock("mess-a"):
        assert "mess:mess-a" in locks._local_locks
    async with locks.member_mess_lock("user-1", "mess-a"):
        pass

    assert locks._local_locks == {}
    assert locks._local_users == {}


@pytest.mark.asyncio
async def test_waiters_share_one_lock_until_the_last_release():
    order = []

    async def _hold(tag):
        async with locks.mess_lock("mess-b"):
            order.append(f"{tag}:in")
            await asyncio.sleep(0.01)
            order.append(f"{tag}:out")

    await asyncio.gather(_hold("first"), _hold("second"), _hold("third"))

    assert order == ["first:in", "first:out", "second:in", "second:out", "third:in", "third:out"]
    assert locks._local_locks == {}


@pytest.mark.asyncio
async def test_timed_out_waiter_does_not_leak_its_entry():
    with patch.object(locks.settings, "LOCK_TIMEOUT_SECONDS", 1):
        async with locks.mess_lock("mess-c"):
            with pytest.raises(locks.LockTimeoutError):
                async with locks.mess_lock("mess-c"):
                    pass
            assert locks._local_users["mess:mess-c"] == 1

    assert locks._local_locks == {}
    assert locks._local_users == {}
