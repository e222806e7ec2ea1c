import redis
from rq import Worker, Queue

from ..core.logging_config import configure_logging
from ..settings import settings
from .scheduler import RESOLUTION_QUEUE_NAME

redis_conn = redis.from_url(settings.REDIS_URL)

if __name__ == "__main__":
    configure_logging()
    queue = Queue(RESOLUTION_QUEUE_NAME, connection=redis_conn)
    worker = Worker([queue], connection=redis_conn)
    worker.work()
