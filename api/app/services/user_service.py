from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User


async def get_user_by_id(session: AsyncSession, user_id: str | uuid.UUID) -> User | None:
    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        return None
    result = await session.execute(select(User).where(User.id == user_uuid))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    email: str,
    *,
    display_name: str | None = None,
    subscription_type: str = "free",
    is_premium: bool = False,
) -> User:
    user = User(
        email=email.lower(),
        display_name=display_name,
        subscription_type=subscription_type,
        is_premium=is_premium,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user
