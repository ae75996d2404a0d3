"""User model with plan metadata and the accumulated taste profile."""

from __future__ import annotations

import typing
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, event
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base_class import Base
from app.utils.datetime import ensure_tz_aware, utcnow

JSON_COMPATIBLE = JSON().with_variant(JSONB, "postgresql")

if typing.TYPE_CHECKING:  # pragma: no cover
    from app.models.usage import AIQueryUsage


class User(Base):
    """Primary user account record."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255))
    subscription_type: Mapped[str] = mapped_column(String(32), default="free", nullable=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    ai_queries: Mapped[list["AIQueryUsage"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    taste_profile: Mapped["UserTasteProfile | None"] = relationship(
        back_populates="user", cascade="all, delete-orphan", uselist=False
    )


class UserTasteProfile(Base):
    """Per-user genre and sub-genre affinity scores.

    ``genre_scores`` and ``sub_genre_scores`` are ordered lists so ties on score
    resolve to the entry that was recorded first.
    """
    __tablename__ = "user_taste_profiles"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_taste_profile"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    genre_scores: Mapped[list[dict]] = mapped_column(JSON_COMPATIBLE, default=list)
    sub_genre_scores: Mapped[list[dict]] = mapped_column(JSON_COMPATIBLE, default=list)
    total_interactions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_decay_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship(back_populates="taste_profile")


@event.listens_for(UserTasteProfile, "load")
@event.listens_for(UserTasteProfile, "refresh")
def _normalize_profile_timestamps(target: UserTasteProfile, *_, **__) -> None:
    """Normalize profile timestamps after load/refresh events."""
    target.last_decay_at = ensure_tz_aware(target.last_decay_at)  # type: ignore[assignment]
    target.last_updated_at = ensure_tz_aware(target.last_updated_at)  # type: ignore[assignment]
