"""Plan tiers and monthly AI query accounting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.usage import AIQueryUsage
from app.models.user import User
from app.utils.datetime import utc_month_range, utcnow

logger = logging.getLogger("app.services.usage")

PLAN_CONFIG: dict[str, dict[str, int]] = {
    "free": {"ai": 5},
    "starter": {"ai": 200},
    "pro": {"ai": 500},
    "pro_plus": {"ai": 2000},
    # Legacy label, billed as starter.
    "premium": {"ai": 200},
}
KNOWN_PLANS = ("free", "starter", "pro", "pro_plus")


@dataclass(frozen=True, slots=True)
class UsageSnapshot:
    plan: str
    limit: int
    used: int
    period_start: datetime
    period_end: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan,
            "monthly_limit": self.limit,
            "used_this_month": self.used,
            "remaining": self.remaining,
            "period": {"start": self.period_start.isoformat(), "end": self.period_end.isoformat()},
        }


def normalize_plan(subscription_type: str | None, is_premium: bool = False) -> str:
    raw = str(subscription_type or "free").strip().lower()
    if raw == "premium":
        return "starter"
    if raw in KNOWN_PLANS:
        return raw
    return "starter" if is_premium else "free"


def plan_limit(plan: str) -> int:
    return PLAN_CONFIG.get(plan, PLAN_CONFIG["free"])["ai"]


async def get_usage(session: AsyncSession, user: User, *, now: datetime | None = None) -> UsageSnapshot:
    plan = normalize_plan(user.subscription_type, user.is_premium)
    start, end = utc_month_range(now or utcnow())
    result = await session.execute(
        select(func.count(AIQueryUsage.id)).where(
            AIQueryUsage.user_id == user.id,
            AIQueryUsage.created_at >= start,
            AIQueryUsage.created_at < end,
        )
    )
    return UsageSnapshot(
        plan=plan,
        limit=plan_limit(plan),
        used=int(result.scalar_one() or 0),
        period_start=start,
        period_end=end,
    )


async def record_usage(session: AsyncSession, user: User, top_k: int, *, now: datetime | None = None) -> None:
    session.add(AIQueryUsage(user_id=user.id, top_k=top_k, created_at=now or utcnow()))
    await session.commit()
