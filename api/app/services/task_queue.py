"""RQ task queue wrapper with inline fallback for local/test runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry
from rq.registry import FailedJobRegistry, ScheduledJobRegistry, StartedJobRegistry
from rq.worker import Worker
from rq_scheduler import Scheduler

from app.core.config import settings
from app.utils.datetime import utcnow

logger = logging.getLogger("app.services.task_queue")

DEFAULT_RETRY = Retry(max=2, interval=[30, 120])
MAINTENANCE_QUEUE = "maintenance"


class TaskQueue:
    """Enqueue jobs on Redis when it is reachable, otherwise run them inline."""

    def __init__(self) -> None:
        self.queue_names: list[str] = settings.worker_queue_names or ["default"]
        self._connection: Redis | None = None
        self._enabled = False
        self._bootstrap()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def connection(self) -> Redis | None:
        return self._connection

    def _bootstrap(self) -> None:
        if settings.environment.lower() == "test":
            logger.info("Task queue disabled in test environment")
            return
        try:
            connection = Redis.from_url(settings.redis_url)
            connection.ping()
        except (RedisError, OSError) as exc:  # pragma: no cover - network/redis specific
            logger.warning("Redis unavailable; running jobs inline: %s", exc)
            return
        self._connection = connection
        self._enabled = True
        logger.info("Task queue ready (queues: %s)", ", ".join(self.queue_names))

    def get_queue(self, queue_name: str | None = None) -> Queue:
        if not self._connection:
            raise RuntimeError("Queue connection not initialized")
        target = queue_name or (self.queue_names[0] if self.queue_names else "default")
        return Queue(target, connection=self._connection)

    async def enqueue_taste_decay(self, *, requested_by: str | None = None) -> Any:
        """Run the monthly decay sweep on the maintenance queue."""
        from app.jobs.maintenance import run_taste_decay_job
        from app.services.taste_decay_service import run_monthly_decay_sweep
        from app.db.session import async_session

        async def _inline() -> dict[str, int]:
            async with async_session() as session:
                result = await run_monthly_decay_sweep(session)
            return result.to_dict()

        logger.info("Taste decay sweep requested by %s", requested_by or "system")
        return await self.enqueue_or_run(
            run_taste_decay_job,
            fallback=_inline,
            queue_name=MAINTENANCE_QUEUE,
            timeout_seconds=600,
            description="maintenance:taste_decay",
        )

    async def enqueue_or_run(
        self,
        func: Callable[..., Any],
        *,
        fallback: Callable[[], Any] | None = None,
        queue_name: str | None = None,
        timeout_seconds: int = 60,
        retry: Retry | None = DEFAULT_RETRY,
        description: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Enqueue a job and wait for the result; fall back to inline execution if needed."""

        async def _run_fallback() -> Any:
            target = fallback or (lambda: func(**kwargs))
            result = target()
            if asyncio.iscoroutine(result):
                return await result
            return result

        if not self._enabled or not self._connection:
            return await _run_fallback()

        def _enqueue_and_wait() -> Any:
            queue = self.get_queue(queue_name)
            job = queue.enqueue(
                func,
                kwargs=kwargs,
                job_timeout=timeout_seconds,
                description=description,
                retry=retry,
            )
            return job.latest_result(timeout=timeout_seconds)

        try:
            result = await asyncio.to_thread(_enqueue_and_wait)
        except (RedisError, OSError) as exc:  # pragma: no cover - network/redis specific
            logger.warning("Falling back to inline execution after queue failure: %s", exc)
            return await _run_fallback()
        if result is None:
            return {"status": "queued"}
        return result.return_value

    def snapshot(self) -> dict[str, Any]:
        """Queue, worker and scheduler state for the health endpoint."""
        if not self._connection:
            return {"status": "offline", "queues": [], "workers": [], "error": "queue connection not initialized"}

        queues: list[dict[str, Any]] = []
        for name in self.queue_names:
            queue = Queue(name, connection=self._connection)
            queues.append(
                {
                    "name": name,
                    "size": queue.count,
                    "scheduled": len(ScheduledJobRegistry(queue=queue)),
                    "started": len(StartedJobRegistry(queue=queue)),
                    "failed": len(FailedJobRegistry(queue=queue)),
                }
            )

        workers: list[dict[str, Any]] = []
        try:
            for worker in Worker.all(connection=self._connection):
                workers.append({"name": worker.name, "state": worker.get_state(), "queues": worker.queue_names()})
        except RedisError as exc:  # pragma: no cover - network/redis specific
            logger.warning("Unable to list workers: %s", exc)

        scheduler_summary: dict[str, Any] = {}
        try:
            scheduler = Scheduler(connection=self._connection, queue_name=MAINTENANCE_QUEUE)
            scheduler_summary = {"scheduled_jobs": len(list(scheduler.get_jobs())), "healthy": True}
        except RedisError:  # pragma: no cover - redis specific
            scheduler_summary = {"scheduled_jobs": None, "healthy": False}

        warnings: list[str] = []
        if not workers:
            warnings.append("no_workers")
        if scheduler_summary.get("healthy") is False:
            warnings.append("scheduler_unreachable")
        return {
            "status": "online" if not warnings else "degraded",
            "queues": queues,
            "workers": workers,
            "scheduler": scheduler_summary,
            "warnings": warnings,
            "checked_at": utcnow().isoformat(),
        }


task_queue = TaskQueue()
