"""Monthly attenuation of taste profile scores."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.user import UserTasteProfile
from app.utils.datetime import ensure_tz_aware, months_between, utcnow

logger = logging.getLogger("app.services.taste_decay")

MIN_SCORE = 1


@dataclass(slots=True)
class DecaySweepResult:
    processed: int
    decayed: int
    failed: int

    def to_dict(self) -> dict[str, int]:
        return {"processed": self.processed, "decayed": self.decayed, "failed": self.failed}


def decay_score(score: float, factor: float) -> int:
    """Multiply, floor to an integer, and keep the minimum of 1."""
    return max(MIN_SCORE, math.floor((score or 0) * factor))


def apply_decay(profile: UserTasteProfile, factor: float | None = None, now: datetime | None = None) -> bool:
    """Decay every score once if at least one calendar month has passed since the last decay.

    Returns True when the profile changed. Several missed months still decay only once.
    """
    factor = settings.taste_decay_factor if factor is None else factor
    now = ensure_tz_aware(now) or utcnow()
    last = ensure_tz_aware(profile.last_decay_at)
    if last is not None and months_between(last, now) < 1:
        return False
    profile.genre_scores = [
        {**entry, "score": decay_score(entry.get("score"), factor)} for entry in profile.genre_scores or []
    ]
    profile.sub_genre_scores = [
        {**entry, "score": decay_score(entry.get("score"), factor)} for entry in profile.sub_genre_scores or []
    ]
    profile.last_decay_at = now
    return True


async def run_monthly_decay_sweep(
    session: AsyncSession, *, factor: float | None = None, now: datetime | None = None
) -> DecaySweepResult:
    """Decay every stored profile, committing each one separately.

    A profile that fails to save is rolled back, logged and skipped.
    """
    now = now or utcnow()
    result = await session.execute(select(UserTasteProfile.id))
    profile_ids = list(result.scalars().all())

    processed = decayed = failed = 0
    for profile_id in profile_ids:
        try:
            profile = await session.get(UserTasteProfile, profile_id)
            if profile is None:
                continue
            changed = apply_decay(profile, factor=factor, now=now)
            if changed:
                await session.commit()
                decayed += 1
            processed += 1
        except (SQLAlchemyError, TypeError, ValueError):
            failed += 1
            await session.rollback()
            logger.exception("Taste decay failed for profile %s; continuing sweep", profile_id)
    logger.info(
        "Monthly taste decay completed (processed=%s decayed=%s failed=%s)", processed, decayed, failed
    )
    return DecaySweepResult(processed=processed, decayed=decayed, failed=failed)
