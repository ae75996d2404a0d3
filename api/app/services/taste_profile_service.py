"""Taste profile store: weighted genre and sub-genre affinity per user."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound, PersistenceError, ValidationError
from app.models.user import UserTasteProfile
from app.recommender.taxonomy import ref_id
from app.services.taste_decay_service import apply_decay
from app.utils.datetime import utcnow

logger = logging.getLogger("app.services.taste_profile")

MIN_SCORE = 1
UNKNOWN_PARENT_GENRE = "unknown"
FACETS = ("genres", "sub_genres")


@dataclass(frozen=True, slots=True)
class InteractionWeight:
    genre: float
    sub_genre: float


INTERACTION_WEIGHTS: dict[str, InteractionWeight] = {
    "play": InteractionWeight(genre=0.5, sub_genre=1),
    "like": InteractionWeight(genre=2.5, sub_genre=5),
    "favorite": InteractionWeight(genre=2.5, sub_genre=5),
    "skip": InteractionWeight(genre=-1, sub_genre=-2),
    "repeat": InteractionWeight(genre=1.5, sub_genre=3),
    "download": InteractionWeight(genre=2, sub_genre=4),
    "unfavorite": InteractionWeight(genre=-2.5, sub_genre=-5),
}


def interaction_weight(kind: str) -> InteractionWeight:
    weight = INTERACTION_WEIGHTS.get(str(kind or "").strip().lower())
    if weight is None:
        raise ValidationError(f"Unknown interaction type: {kind!r}")
    return weight


async def get_profile(session: AsyncSession, user_id: uuid.UUID) -> UserTasteProfile | None:
    result = await session.execute(select(UserTasteProfile).where(UserTasteProfile.user_id == user_id))
    return result.scalar_one_or_none()


def _new_profile(user_id: uuid.UUID, now: datetime) -> UserTasteProfile:
    return UserTasteProfile(
        user_id=user_id,
        genre_scores=[],
        sub_genre_scores=[],
        total_interactions=0,
        last_decay_at=now,
        last_updated_at=now,
    )


def _bump(entries: list[dict[str, Any]], key: str, entry_id: str, points: float, template: dict[str, Any]) -> None:
    for entry in entries:
        if entry.get(key) == entry_id:
            entry["score"] = max(MIN_SCORE, (entry.get("score") or 0) + points)
            return
    entries.append({**template, key: entry_id, "score": max(MIN_SCORE, points)})


def apply_interaction(
    profile: UserTasteProfile,
    weight: InteractionWeight,
    genres: Iterable[Any],
    sub_genres: Iterable[Any],
    *,
    now: datetime,
) -> None:
    """Apply one interaction's weights to ``profile`` in memory.

    Score lists are rebuilt as new objects so the JSON columns are flagged dirty.
    """
    genre_scores = [dict(entry) for entry in profile.genre_scores or []]
    sub_genre_scores = [dict(entry) for entry in profile.sub_genre_scores or []]

    for tag in genres or []:
        genre_id = ref_id(tag)
        if not genre_id:
            continue
        name = tag.get("name") if isinstance(tag, dict) else None
        _bump(genre_scores, "genre_id", genre_id, weight.genre, {"genre_name": name or ""})

    for tag in sub_genres or []:
        sub_genre_id = ref_id(tag)
        if not sub_genre_id:
            continue
        name = tag.get("name") if isinstance(tag, dict) else None
        parent = ref_id(tag.get("genre") or tag.get("genre_id")) if isinstance(tag, dict) else None
        _bump(
            sub_genre_scores,
            "sub_genre_id",
            sub_genre_id,
            weight.sub_genre,
            {"sub_genre_name": name or "", "parent_genre_id": parent or UNKNOWN_PARENT_GENRE},
        )

    profile.genre_scores = genre_scores
    profile.sub_genre_scores = sub_genre_scores
    profile.total_interactions = (profile.total_interactions or 0) + 1
    profile.last_updated_at = now


async def record_interaction(
    session: AsyncSession,
    user_id: uuid.UUID,
    kind: str,
    genres: Iterable[Any] = (),
    sub_genres: Iterable[Any] = (),
    *,
    now: datetime | None = None,
) -> UserTasteProfile:
    """Decay if due, apply the interaction weights, and persist in a single commit.

    Concurrent calls for the same user are last-write-wins.
    """
    weight = interaction_weight(kind)
    now = now or utcnow()
    try:
        profile = await get_profile(session, user_id)
        if profile is None:
            profile = _new_profile(user_id, now)
            session.add(profile)
            logger.info("Created taste profile for user %s", user_id)
        apply_decay(profile, now=now)
        apply_interaction(profile, weight, genres, sub_genres, now=now)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Failed to persist taste interaction for user %s", user_id)
        raise PersistenceError("Could not save taste interaction") from exc
    await session.refresh(profile)
    logger.debug("Recorded %s interaction for user %s (total=%s)", kind, user_id, profile.total_interactions)
    return profile


def get_top(profile: UserTasteProfile, facet: str, limit: int = 5) -> list[dict[str, Any]]:
    """Highest-scoring entries for ``facet``; equal scores keep insertion order."""
    if facet not in FACETS:
        raise ValidationError(f"Unknown taste facet: {facet!r}")
    entries = profile.genre_scores if facet == "genres" else profile.sub_genre_scores
    ranked = sorted(entries or [], key=lambda entry: entry.get("score") or 0, reverse=True)
    return [dict(entry) for entry in ranked[: max(0, limit)]]


async def load_current_profile(
    session: AsyncSession, user_id: uuid.UUID, *, now: datetime | None = None
) -> UserTasteProfile | None:
    """Return the profile with any due decay applied and persisted."""
    profile = await get_profile(session, user_id)
    if profile is None:
        return None
    if apply_decay(profile, now=now or utcnow()):
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceError("Could not save decayed taste profile") from exc
        await session.refresh(profile)
    return profile


async def require_current_profile(
    session: AsyncSession, user_id: uuid.UUID, *, now: datetime | None = None
) -> UserTasteProfile:
    profile = await load_current_profile(session, user_id, now=now)
    if profile is None:
        raise NotFound(f"No taste profile for user {user_id}")
    return profile


async def get_taste_profile(
    session: AsyncSession, user_id: uuid.UUID, *, limit: int = 5
) -> dict[str, Any]:
    profile = await load_current_profile(session, user_id)
    if profile is None:
        return {
            "total_interactions": 0,
            "top_genres": [],
            "top_sub_genres": [],
            "last_updated_at": None,
            "last_decay_at": None,
        }
    return {
        "total_interactions": profile.total_interactions,
        "top_genres": get_top(profile, "genres", limit),
        "top_sub_genres": get_top(profile, "sub_genres", limit),
        "last_updated_at": profile.last_updated_at,
        "last_decay_at": profile.last_decay_at,
    }
