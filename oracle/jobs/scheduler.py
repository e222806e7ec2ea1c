import os
import time
import logging

import redis
from rq import Queue

from ..core.logging_config import configure_logging
from ..settings import settings
from .run import resolution_sync_wrapper

logger = logging.getLogger(__name__)
RESOLUTION_QUEUE_NAME = "resolution"
SCHEDULER_HEARTBEAT_KEY = "scheduler:heartbeat"


def enqueue_resolution(queue: Queue) -> str | None:
    count = queue.count if isinstance(queue.count, int) else queue.count()
    if count:
        logger.info("resolution_enqueue_skipped queue_count=%s", count)
        return None
    job = queue.enqueue(resolution_sync_wrapper)
    logger.info("resolution_enqueued id=%s", job.id)
    return job.id


def main() -> None:
    configure_logging()
    redis_conn = redis.from_url(settings.REDIS_URL)
    queue = Queue(RESOLUTION_QUEUE_NAME, connection=redis_conn)
    interval = max(60, settings.RESOLUTION_INTERVAL_SECONDS)
    scheduler_id = f"{os.getpid()}:{int(time.time())}"

    while True:
        try:
            ttl_seconds = max(interval * 2, 120)
            claimed = redis_conn.set(SCHEDULER_HEARTBEAT_KEY, scheduler_id, nx=True, ex=ttl_seconds)
            if not claimed:
                existing = redis_conn.get(SCHEDULER_HEARTBEAT_KEY)
                existing_id = existing.decode() if existing else "unknown"
                if existing_id != scheduler_id:
                    logger.warning("scheduler_multiple_detected existing=%s current=%s", existing_id, scheduler_id)
                redis_conn.set(SCHEDULER_HEARTBEAT_KEY, scheduler_id, ex=ttl_seconds)
            enqueue_resolution(queue)
        except Exception:
            logger.exception("resolution_enqueue_failed")
        time.sleep(interval)


if __name__ == "__main__":
    main()
