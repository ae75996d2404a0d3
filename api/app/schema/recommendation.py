"""Schemas for AI and taste-based recommendation responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

MAX_TOP_K = 20
DEFAULT_TOP_K = 10


class RecommendRequest(BaseModel):
    """Free-text brief plus optional vocals toggle and result count."""
    query_text: str = Field(default="", max_length=2000)
    vocals: Literal["on", "off", "any"] | None = None
    top_k: int = DEFAULT_TOP_K

    @field_validator("top_k", mode="before")
    @classmethod
    def _clamp_top_k(cls, value: Any) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            return DEFAULT_TOP_K
        if number <= 0:
            number = DEFAULT_TOP_K if number == 0 else 1
        return max(1, min(number, MAX_TOP_K))


class TagRead(BaseModel):
    id: str
    name: str = ""


class RecommendationItem(BaseModel):
    song_id: str
    title: str = ""
    image_url: str | None = None
    audio_url: str | None = None
    bpm: float | None = None
    key: str | None = None
    has_vocals: bool | None = None
    collection_type: str | None = None
    genres: list[TagRead] = Field(default_factory=list)
    sub_genres: list[TagRead] = Field(default_factory=list)
    moods: list[TagRead] = Field(default_factory=list)
    instruments: list[TagRead] = Field(default_factory=list)
    score: float
    why: str


class RecommendationResponse(BaseModel):
    intent: dict[str, Any]
    source: str
    total_candidates: int
    filtered_count: int
    results: list[RecommendationItem] = Field(default_factory=list)


class TopPreference(BaseModel):
    id: str
    name: str = ""
    score: float


class TasteRecommendationResponse(BaseModel):
    """Taste-based recommendations, or the reason there are none yet."""
    has_recommendations: bool
    reason: str | None = None
    interaction_count: int = 0
    min_required: int | None = None
    top_sub_genres: list[TopPreference] = Field(default_factory=list)
    top_genres: list[TopPreference] = Field(default_factory=list)
    last_updated_at: datetime | None = None
    recommendations: RecommendationResponse | None = None
