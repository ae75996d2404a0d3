from __future__ import annotations

import logging
from datetime import timedelta

from rq_scheduler import Scheduler

from app.core.config import settings
from app.jobs.maintenance import run_taste_decay_job
from app.services.task_queue import MAINTENANCE_QUEUE, task_queue

logger = logging.getLogger("app.jobs.schedule_registry")


def _schedule_entries() -> list[dict]:
    default_queue = task_queue.queue_names[0] if task_queue.queue_names else "default"
    return [
        {
            "id": "maintenance:taste_decay",
            "func": run_taste_decay_job,
            "cron": settings.taste_decay_cron,
            "queue_name": MAINTENANCE_QUEUE if MAINTENANCE_QUEUE in task_queue.queue_names else default_queue,
        },
    ]


def ensure_schedules() -> None:
    """Idempotently register periodic jobs with rq-scheduler."""
    if settings.environment.lower() == "test":
        return
    if not task_queue.connection:
        logger.info("Skipping scheduler bootstrap; queue connection is unavailable")
        return
    scheduler = Scheduler(connection=task_queue.connection, queue_name=task_queue.queue_names[0])
    existing = {job.id for job in scheduler.get_jobs()}
    for entry in _schedule_entries():
        if entry["id"] in existing:
            continue
        scheduler.cron(
            entry["cron"],
            func=entry["func"],
            id=entry["id"],
            queue_name=entry["queue_name"],
            use_local_timezone=False,
            result_ttl=int(timedelta(days=7).total_seconds()),
        )
        logger.info("Scheduled job %s (%s) on queue %s", entry["id"], entry["cron"], entry["queue_name"])
