"""RQ worker entrypoint: ``python -m app.worker``."""

from __future__ import annotations

import logging
import socket

from redis import Redis
from rq import Queue, Worker

from app.core.config import settings
from app.services.task_queue import MAINTENANCE_QUEUE

WORKER_LOG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] %(message)s"

logger = logging.getLogger("app.worker")


def _queue_names() -> list[str]:
    names = list(settings.worker_queue_names)
    # Scheduled decay lands on the maintenance queue even if it is not configured.
    if MAINTENANCE_QUEUE not in names:
        names.append(MAINTENANCE_QUEUE)
    return names


def main() -> None:
    logging.basicConfig(level=settings.log_level, format=WORKER_LOG_FORMAT, force=True)
    connection = Redis.from_url(settings.redis_url)
    names = _queue_names()
    queues = [Queue(name, connection=connection) for name in names]
    logger.info("Starting worker for queues: %s", ", ".join(names))
    worker = Worker(queues, connection=connection, name=f"vara-worker-{socket.gethostname()}")
    try:
        worker.work(with_scheduler=True)
    except KeyboardInterrupt:
        logger.info("Worker shutdown requested")


if __name__ == "__main__":
    main()
