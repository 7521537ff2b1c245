"""RQ worker process entrypoint for billing jobs.

``python worker.py`` runs the worker; ``python worker.py enqueue-monthly``
enqueues a cycle close for every mess (run it from cron on the 1st).
"""

import asyncio
import sys

from rq import Worker

from services.billing_queue import BILLING_QUEUE_NAME, enqueue_all_messes, get_redis_connection


def main():
    if len(sys.argv) > 1 and sys.argv[1] == "enqueue-monthly":
        mess_ids = asyncio.run(enqueue_all_messes())
        print(f"📅 Enqueued monthly billing for {len(mess_ids)} messes.")
        return

    redis_conn = get_redis_connection()
    worker = Worker([BILLING_QUEUE_NAME], connection=redis_conn)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
