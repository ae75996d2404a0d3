"""Local mirror of the music catalog used when the catalog service is down."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base
from app.utils.datetime import utcnow

JSON_COMPATIBLE = JSON().with_variant(JSONB, "postgresql")


class Genre(Base):
    __tablename__ = "genres"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class SubGenre(Base):
    __tablename__ = "sub_genres"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    genre_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("genres.id", ondelete="SET NULL"))


class Mood(Base):
    __tablename__ = "moods"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class Instrument(Base):
    __tablename__ = "instruments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class Song(Base):
    """Catalog song with tag lists stored as ``{"id", "name"}`` objects."""
    __tablename__ = "songs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    image_url: Mapped[str | None] = mapped_column(String(1024))
    audio_url: Mapped[str | None] = mapped_column(String(1024))
    collection_type: Mapped[str] = mapped_column(String(16), nullable=False, default="free")
    bpm: Mapped[float | None] = mapped_column(Float)
    key: Mapped[str | None] = mapped_column(String(64))
    has_vocals: Mapped[bool | None] = mapped_column(Boolean)
    genres: Mapped[list[dict]] = mapped_column(JSON_COMPATIBLE, default=list)
    sub_genres: Mapped[list[dict]] = mapped_column(JSON_COMPATIBLE, default=list)
    moods: Mapped[list[dict]] = mapped_column(JSON_COMPATIBLE, default=list)
    instruments: Mapped[list[dict]] = mapped_column(JSON_COMPATIBLE, default=list)
    trending_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_plays: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
