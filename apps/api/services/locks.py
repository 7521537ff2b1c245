"""Per-mess and per-member mutual exclusion for ledger and workflow mutations.

An in-process ``asyncio.Lock`` per key always applies. When
``DISTRIBUTED_LOCKS_ENABLED`` is set, a Redis lock is held as well so that
separate worker processes serialize on the same key.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

import redis.asyncio as redis

from config import settings


_local_locks: Dict[str, asyncio.Lock] = {}
# holders plus waiters per key; the entry is dropped when it reaches zero
_local_users: Dict[str, int] = {}


class LockTimeoutError(RuntimeError):
    """Raised when a lock could not be acquired in time."""


def _checkout_local_lock(key: str) -> asyncio.Lock:
    lock = _local_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[key] = lock
    _local_users[key] = _local_users.get(key, 0) + 1
    return lock


def _return_local_lock(key: str) -> None:
    remaining = _local_users.get(key, 0) - 1
    if remaining > 0:
        _local_users[key] = remaining
        return
    _local_users.pop(key, None)
    _local_locks.pop(key, None)


@asynccontextmanager
async def keyed_lock(key: str) -> AsyncIterator[None]:
    timeout = max(int(settings.LOCK_TIMEOUT_SECONDS), 1)
    local = _checkout_local_lock(key)
    try:
        await asyncio.wait_for(local.acquire(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        _return_local_lock(key)
        raise LockTimeoutError(f"Timed out waiting for lock {key}") from exc
    except BaseException:
        _return_local_lock(key)
        raise

    try:
        if not settings.DISTRIBUTED_LOCKS_ENABLED:
            yield
            return

        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        try:
            lock = redis_client.lock(f"mess:lock:{key}", timeout=timeout, blocking_timeout=timeout)
            acquired = await lock.acquire()
            if not acquired:
                raise LockTimeoutError(f"Timed out waiting for lock {key}")
            try:
                yield
            finally:
                await lock.release()
        finally:
            await redis_client.aclose()
    finally:
        local.release()
        _return_local_lock(key)


def mess_lock(mess_id: str):
    """Serialize credit, bill and verification-resolution mutations for one mess."""
    return keyed_lock(f"mess:{mess_id}")


def member_mess_lock(user_id: str, mess_id: str):
    """Serialize verification submissions for one (user, mess) pair."""
    return keyed_lock(f"member:{user_id}:{mess_id}")


def reset_local_locks() -> None:
    _local_locks.clear()
    _local_users.clear()
