"""Candidate retrieval: facet fan-out against the catalog, local storage as the last tier."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Iterable, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import UpstreamUnavailable
from app.models.catalog import Song
from app.recommender.query_spec import QuerySpec
from app.recommender.taxonomy import Taxonomy, ref_id
from app.utils.datetime import ensure_tz_aware

logger = logging.getLogger("app.recommender.candidates")

SUB_GENRE_LIMIT = 80
SIBLING_LIMIT = 60
GENRE_LIMIT = 80
MOOD_LIMIT = 80
INSTRUMENT_LIMIT = 80
MIN_POOL_SIZE = 40
TRENDING_LIMIT = 40
DIRECT_STORAGE_MAX = 400


@dataclass(slots=True)
class TagRef:
    id: str
    name: str = ""


@dataclass(slots=True)
class Candidate:
    """Normalized song shape that scoring and ranking operate on."""

    id: str
    title: str = ""
    image_url: str | None = None
    audio_url: str | None = None
    collection_type: str | None = None
    genres: list[TagRef] = field(default_factory=list)
    sub_genres: list[TagRef] = field(default_factory=list)
    moods: list[TagRef] = field(default_factory=list)
    instruments: list[TagRef] = field(default_factory=list)
    bpm: float | None = None
    key: str | None = None
    has_vocals: bool | None = None
    trending_score: float = 0.0
    total_plays: float = 0.0
    created_at: datetime | None = None

    def tag_ids(self, facet: str) -> set[str]:
        return {tag.id for tag in getattr(self, facet)}


@dataclass(slots=True)
class ResolvedQuery:
    """Taxonomy ids behind the names in a :class:`QuerySpec`."""

    sub_genre_ids: list[str] = field(default_factory=list)
    sibling_sub_genre_ids: list[str] = field(default_factory=list)
    genre_ids: list[str] = field(default_factory=list)
    mood_ids: list[str] = field(default_factory=list)
    instrument_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RetrievalResult:
    candidates: list[Candidate]
    resolved: ResolvedQuery
    source: str


class CandidateSource(Protocol):
    async def songs_by_genres(
        self, *, genre_ids: Iterable[str] = (), sub_genre_ids: Iterable[str] = (), limit: int = 120
    ) -> list[dict[str, Any]]: ...
    async def songs_by_moods(self, mood_ids: Iterable[str], limit: int = 100) -> list[dict[str, Any]]: ...
    async def songs_by_instruments(self, instrument_ids: Iterable[str], limit: int = 100) -> list[dict[str, Any]]: ...
    async def trending(self, limit: int = 50) -> list[dict[str, Any]]: ...


class CandidateStrategy(Protocol):
    name: str

    async def collect(self, spec: QuerySpec, resolved: ResolvedQuery, taxonomy: Taxonomy) -> list[Candidate]: ...


def _tags(values: Any, taxonomy: Taxonomy, facet: str) -> list[TagRef]:
    """Normalize bare ids or ``{_id, name}`` objects, filling names from the taxonomy."""
    if not isinstance(values, list):
        return []
    tags: list[TagRef] = []
    for value in values:
        tag_id = ref_id(value)
        if not tag_id:
            continue
        name = value.get("name") if isinstance(value, dict) else None
        tags.append(TagRef(id=tag_id, name=name or taxonomy.name_for(facet, tag_id) or ""))
    return tags


def _float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_tz_aware(value)
    if isinstance(value, str) and value:
        try:
            return ensure_tz_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def candidate_from_catalog(doc: dict[str, Any], taxonomy: Taxonomy) -> Candidate | None:
    """Adapt a catalog JSON song document."""
    song_id = ref_id(doc)
    if not song_id:
        return None
    analytics = doc.get("analytics") if isinstance(doc.get("analytics"), dict) else {}
    has_vocals = doc.get("hasVocals")
    return Candidate(
        id=song_id,
        title=str(doc.get("title") or ""),
        image_url=doc.get("imageUrl"),
        audio_url=doc.get("audioUrl"),
        collection_type=doc.get("collectionType"),
        genres=_tags(doc.get("genres"), taxonomy, "genres"),
        sub_genres=_tags(doc.get("subGenres"), taxonomy, "sub_genres"),
        moods=_tags(doc.get("moods"), taxonomy, "moods"),
        instruments=_tags(doc.get("instruments"), taxonomy, "instruments"),
        bpm=_float(doc.get("bpm")),
        key=doc.get("key") if isinstance(doc.get("key"), str) else None,
        has_vocals=has_vocals if isinstance(has_vocals, bool) else None,
        trending_score=_float(analytics.get("trendingScore")) or 0.0,
        total_plays=_float(analytics.get("totalPlays")) or 0.0,
        created_at=_timestamp(doc.get("createdAt")),
    )


def candidate_from_song(song: Song, taxonomy: Taxonomy) -> Candidate:
    """Adapt a row from the local ``songs`` mirror."""
    return Candidate(
        id=song.id,
        title=song.title or "",
        image_url=song.image_url,
        audio_url=song.audio_url,
        collection_type=song.collection_type,
        genres=_tags(song.genres, taxonomy, "genres"),
        sub_genres=_tags(song.sub_genres, taxonomy, "sub_genres"),
        moods=_tags(song.moods, taxonomy, "moods"),
        instruments=_tags(song.instruments, taxonomy, "instruments"),
        bpm=song.bpm,
        key=song.key,
        has_vocals=song.has_vocals,
        trending_score=song.trending_score or 0.0,
        total_plays=float(song.total_plays or 0),
        created_at=ensure_tz_aware(song.created_at),
    )


def resolve_query(spec: QuerySpec, taxonomy: Taxonomy) -> ResolvedQuery:
    def _ids(names: Iterable[str], facet: str) -> list[str]:
        ids: list[str] = []
        for name in names:
            entry = taxonomy.find(facet, name)
            if entry and entry.id not in ids:
                ids.append(entry.id)
        return ids

    sub_genre_ids = _ids(spec.sub_genres, "sub_genres")
    return ResolvedQuery(
        sub_genre_ids=sub_genre_ids,
        sibling_sub_genre_ids=taxonomy.siblings_of(sub_genre_ids),
        genre_ids=_ids([spec.genre] if spec.genre else [], "genres"),
        mood_ids=_ids(spec.moods, "moods"),
        instrument_ids=_ids(spec.instruments, "instruments"),
    )


def _merge(pool: dict[str, Candidate], docs: Iterable[dict[str, Any]], taxonomy: Taxonomy) -> None:
    for doc in docs:
        candidate = candidate_from_catalog(doc, taxonomy)
        if candidate:
            pool[candidate.id] = candidate


class CatalogCandidateStrategy:
    """Fan out one catalog call per populated facet and pool the results by song id."""

    name = "catalog"

    def __init__(self, catalog: CandidateSource, *, min_pool_size: int = MIN_POOL_SIZE) -> None:
        self.catalog = catalog
        self.min_pool_size = min_pool_size

    async def collect(self, spec: QuerySpec, resolved: ResolvedQuery, taxonomy: Taxonomy) -> list[Candidate]:
        calls: list[tuple[str, Awaitable[list[dict[str, Any]]]]] = []
        if resolved.sub_genre_ids:
            calls.append(
                ("sub_genre", self.catalog.songs_by_genres(sub_genre_ids=resolved.sub_genre_ids, limit=SUB_GENRE_LIMIT))
            )
        if resolved.sibling_sub_genre_ids:
            calls.append(
                (
                    "sibling_sub_genre",
                    self.catalog.songs_by_genres(sub_genre_ids=resolved.sibling_sub_genre_ids, limit=SIBLING_LIMIT),
                )
            )
        if resolved.genre_ids:
            calls.append(("genre", self.catalog.songs_by_genres(genre_ids=resolved.genre_ids, limit=GENRE_LIMIT)))
        if resolved.mood_ids:
            calls.append(("mood", self.catalog.songs_by_moods(resolved.mood_ids, limit=MOOD_LIMIT)))
        if resolved.instrument_ids:
            calls.append(
                ("instrument", self.catalog.songs_by_instruments(resolved.instrument_ids, limit=INSTRUMENT_LIMIT))
            )

        pool: dict[str, Candidate] = {}
        results = await asyncio.gather(*(call for _, call in calls), return_exceptions=True)
        failures = 0
        for (facet, _), result in zip(calls, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures += 1
                logger.warning("Catalog %s retrieval failed: %s", facet, result)
                continue
            _merge(pool, result, taxonomy)
        if calls and failures == len(calls):
            raise UpstreamUnavailable("All catalog facet calls failed")

        if len(pool) < self.min_pool_size:
            try:
                _merge(pool, await self.catalog.trending(TRENDING_LIMIT), taxonomy)
            except UpstreamUnavailable as exc:
                logger.warning("Trending fallback unavailable: %s", exc)

        if not pool:
            raise UpstreamUnavailable("Catalog returned no candidates")
        return list(pool.values())


async def fetch_songs_direct(session: AsyncSession, spec: QuerySpec, limit: int = 200) -> list[Song]:
    """Best-effort query over the local song mirror using vocals, tempo and key-mode hints."""
    stmt = select(Song)
    if spec.vocals == "off":
        stmt = stmt.where(Song.has_vocals.is_(False))
    elif spec.vocals == "on":
        stmt = stmt.where(Song.has_vocals.is_(True))
    if spec.tempo:
        if spec.tempo.min is not None:
            stmt = stmt.where(Song.bpm >= spec.tempo.min)
        if spec.tempo.max is not None:
            stmt = stmt.where(Song.bpm <= spec.tempo.max)
    if spec.key and spec.key.mode:
        stmt = stmt.where(Song.key.ilike(f"%{spec.key.mode}%"))
    stmt = stmt.order_by(Song.trending_score.desc(), Song.total_plays.desc(), Song.created_at.desc()).limit(
        min(max(1, int(limit)), DIRECT_STORAGE_MAX)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


class StorageCandidateStrategy:
    name = "storage"

    def __init__(self, session: AsyncSession, *, limit: int | None = None) -> None:
        self.session = session
        self.limit = limit or settings.direct_storage_limit

    async def collect(self, spec: QuerySpec, resolved: ResolvedQuery, taxonomy: Taxonomy) -> list[Candidate]:
        try:
            songs = await fetch_songs_direct(self.session, spec, self.limit)
        except SQLAlchemyError as exc:
            raise UpstreamUnavailable(f"Direct song query failed: {exc}") from exc
        return [candidate_from_song(song, taxonomy) for song in songs]


class CandidateRetriever:
    def __init__(self, strategies: Sequence[CandidateStrategy]) -> None:
        self.strategies = list(strategies)

    async def collect(self, spec: QuerySpec, taxonomy: Taxonomy) -> RetrievalResult:
        resolved = resolve_query(spec, taxonomy)
        for strategy in self.strategies:
            try:
                candidates = await strategy.collect(spec, resolved, taxonomy)
            except UpstreamUnavailable as exc:
                logger.warning("Candidate retrieval via %s unavailable; trying next tier: %s", strategy.name, exc)
                continue
            return RetrievalResult(candidates=candidates, resolved=resolved, source=strategy.name)
        logger.warning("Every candidate retrieval tier failed; returning an empty pool")
        return RetrievalResult(candidates=[], resolved=resolved, source="none")
