"""Scheduled cycle-close jobs (Redis/RQ)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from redis import Redis
from rq import Queue, Retry
from rq.job import Job
from sqlalchemy import select

from config import settings
from database import async_session_maker
from models.mess_credits import MessCredits
from services.billing import process_mess_monthly_bill
from services.errors import DomainError


logger = logging.getLogger(__name__)

BILLING_QUEUE_NAME = "billing_jobs"


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_billing_queue() -> Queue:
    return Queue(
        name=BILLING_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=300,
    )


def enqueue_monthly_billing(mess_id: str) -> Job:
    """Enqueue a cycle close for one mess. Safe to enqueue more than once per cycle."""
    queue = get_billing_queue()
    return queue.enqueue(
        "services.billing_queue.process_monthly_billing_job",
        mess_id,
        job_timeout=300,
        retry=Retry(max=2, interval=[30, 120]),
    )


async def enqueue_all_messes() -> List[str]:
    """Enqueue a cycle close for every mess that has a credits account."""
    async with async_session_maker() as db:
        result = await db.execute(select(MessCredits.mess_id))
        mess_ids = [row[0] for row in result.all()]
    for mess_id in mess_ids:
        enqueue_monthly_billing(mess_id)
    logger.info("monthly_billing_enqueued count=%s", len(mess_ids))
    return mess_ids


async def process_monthly_billing_job_async(mess_id: str) -> Dict[str, Any]:
    async with async_session_maker() as db:
        try:
            result = await process_mess_monthly_bill(mess_id, db)
        except DomainError as exc:
            logger.warning("Monthly billing for mess %s refused: %s", mess_id, exc.message)
            return {"processed": False, "reason": exc.code, "message": exc.message}
    logger.info("Monthly billing job for mess %s finished processed=%s", mess_id, result.get("processed"))
    return result


def process_monthly_billing_job(mess_id: str) -> Dict[str, Any]:
    """RQ worker entrypoint for cycle-close jobs."""
    return asyncio.run(process_monthly_billing_job_async(mess_id))
