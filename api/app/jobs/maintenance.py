"""Maintenance jobs for taste profile upkeep."""

from __future__ import annotations

import asyncio
import logging

from app.db.session import async_session
from app.services.taste_decay_service import run_monthly_decay_sweep

logger = logging.getLogger("app.jobs.maintenance")


def run_taste_decay_job() -> dict[str, int]:
    """Scheduled monthly decay across every stored taste profile."""

    async def _run() -> dict[str, int]:
        async with async_session() as session:
            result = await run_monthly_decay_sweep(session)
        return result.to_dict()

    summary = asyncio.run(_run())
    logger.info("Taste decay job finished: %s", summary)
    return summary
