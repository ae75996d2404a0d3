"""Taste profile schemas for interaction events and preference summaries."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from app.recommender.taxonomy import ref_id


class TagRefIn(BaseModel):
    """Genre or sub-genre tag attached to an interaction event.

    Sub-genres may carry their parent as ``genre_id`` or as a catalog-style
    ``genre`` (bare id or ``{"_id": ...}`` object).
    """
    id: str = Field(min_length=1, validation_alias="_id")
    name: str = ""
    genre_id: str | None = None

    model_config = {"populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def _lift_parent_genre(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("genre_id") and data.get("genre"):
            data = {**data, "genre_id": ref_id(data["genre"])}
        return data


class TasteInteractionCreate(BaseModel):
    """Payload for recording one listening interaction."""
    song_id: str = Field(min_length=1)
    interaction_type: str = Field(min_length=1)
    genres: list[TagRefIn] = Field(default_factory=list)
    sub_genres: list[TagRefIn] = Field(default_factory=list)

    @field_validator("interaction_type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return value.strip().lower()


class TasteInteractionResult(BaseModel):
    total_interactions: int


class GenreScoreRead(BaseModel):
    genre_id: str
    genre_name: str = ""
    score: float


class SubGenreScoreRead(BaseModel):
    sub_genre_id: str
    sub_genre_name: str = ""
    parent_genre_id: str = "unknown"
    score: float


class TasteProfileRead(BaseModel):
    """Decay-adjusted top preferences for the current user."""
    total_interactions: int = 0
    top_genres: list[GenreScoreRead] = Field(default_factory=list)
    top_sub_genres: list[SubGenreScoreRead] = Field(default_factory=list)
    last_updated_at: datetime | None = None
    last_decay_at: datetime | None = None
