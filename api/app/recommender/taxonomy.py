"""In-process taxonomy cache (genres, sub-genres, moods, instruments).

The cache is refreshed on a TTL with a cheap version check in between full
refetches. Concurrent refreshes may race; the last snapshot assigned wins,
and staleness is bounded by the TTL.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import UpstreamUnavailable
from app.models.catalog import Genre, Instrument, Mood, SubGenre

logger = logging.getLogger("app.recommender.taxonomy")

FACETS = ("genres", "sub_genres", "moods", "instruments")


def norm(value: Any) -> str:
    return str(value or "").strip().lower()


def ref_id(value: Any) -> str | None:
    """Pull an id out of a bare id or an ``{"_id"|"id": ...}`` object."""
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    if value is None or value == "":
        return None
    return str(value)


class TaxonomySource(Protocol):
    async def fetch_version(self) -> str | None: ...
    async def fetch_genres(self) -> list[dict[str, Any]]: ...
    async def fetch_sub_genres(self) -> list[dict[str, Any]]: ...
    async def fetch_moods(self) -> list[dict[str, Any]]: ...
    async def fetch_instruments(self) -> list[dict[str, Any]]: ...


@dataclass(frozen=True, slots=True)
class TaxonomyEntry:
    id: str
    name: str
    parent_id: str | None = None


@dataclass(frozen=True)
class Taxonomy:
    """Immutable snapshot with id and normalized-name lookups per facet."""

    genres: tuple[TaxonomyEntry, ...] = ()
    sub_genres: tuple[TaxonomyEntry, ...] = ()
    moods: tuple[TaxonomyEntry, ...] = ()
    instruments: tuple[TaxonomyEntry, ...] = ()
    version: str | None = None
    _by_id: dict[str, dict[str, TaxonomyEntry]] = field(default_factory=dict, repr=False, compare=False)
    _by_name: dict[str, dict[str, TaxonomyEntry]] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        for facet in FACETS:
            by_id: dict[str, TaxonomyEntry] = {}
            by_name: dict[str, TaxonomyEntry] = {}
            for entry in getattr(self, facet):
                by_id[entry.id] = entry
                by_name[norm(entry.name)] = entry
            self._by_id[facet] = by_id
            self._by_name[facet] = by_name

    @classmethod
    def from_payload(
        cls,
        *,
        genres: Iterable[dict[str, Any]] = (),
        sub_genres: Iterable[dict[str, Any]] = (),
        moods: Iterable[dict[str, Any]] = (),
        instruments: Iterable[dict[str, Any]] = (),
        version: str | None = None,
    ) -> "Taxonomy":
        """Build a snapshot from catalog JSON documents."""

        def _entries(items: Iterable[dict[str, Any]], *, with_parent: bool = False) -> tuple[TaxonomyEntry, ...]:
            out: list[TaxonomyEntry] = []
            for item in items:
                entry_id = ref_id(item)
                if not entry_id:
                    continue
                parent = ref_id(item.get("genre") or item.get("genreId")) if with_parent else None
                out.append(TaxonomyEntry(id=entry_id, name=str(item.get("name") or ""), parent_id=parent))
            return tuple(out)

        return cls(
            genres=_entries(genres),
            sub_genres=_entries(sub_genres, with_parent=True),
            moods=_entries(moods),
            instruments=_entries(instruments),
            version=version,
        )

    @property
    def is_incomplete(self) -> bool:
        return any(not getattr(self, facet) for facet in FACETS)

    def get(self, facet: str, entry_id: str) -> TaxonomyEntry | None:
        return self._by_id[facet].get(str(entry_id))

    def find(self, facet: str, name: str) -> TaxonomyEntry | None:
        return self._by_name[facet].get(norm(name))

    def name_for(self, facet: str, entry_id: str) -> str | None:
        entry = self.get(facet, entry_id)
        return entry.name if entry else None

    def parent_of(self, sub_genre_id: str) -> str | None:
        entry = self.get("sub_genres", sub_genre_id)
        return entry.parent_id if entry else None

    def siblings_of(self, sub_genre_ids: list[str]) -> list[str]:
        """Sub-genres sharing the first sub-genre's parent, minus the ones given."""
        if not sub_genre_ids:
            return []
        parent = self.parent_of(sub_genre_ids[0])
        if not parent:
            return []
        excluded = set(sub_genre_ids)
        return [sg.id for sg in self.sub_genres if sg.parent_id == parent and sg.id not in excluded]

    def vocabulary(self) -> dict[str, list[str]]:
        """Allowed display names per facet, in catalog order."""
        return {facet: [entry.name for entry in getattr(self, facet) if entry.name] for facet in FACETS}


class TaxonomyCache:
    """Owns the current :class:`Taxonomy` snapshot and its refresh policy."""

    def __init__(
        self,
        source: TaxonomySource,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = settings.taxonomy_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._snapshot = Taxonomy()
        self._loaded_at: float | None = None

    @property
    def snapshot(self) -> Taxonomy:
        return self._snapshot

    def load(self, taxonomy: Taxonomy) -> None:
        self._snapshot = taxonomy
        self._loaded_at = self._clock()

    def _is_fresh(self) -> bool:
        if self._snapshot.is_incomplete or not self._snapshot.version or self._loaded_at is None:
            return False
        return (self._clock() - self._loaded_at) < self._ttl

    async def ensure_fresh(self) -> Taxonomy:
        """Refresh from the catalog when stale; keep the current snapshot on failure."""
        if self._is_fresh():
            return self._snapshot
        try:
            version = await self._source.fetch_version()
            if self._snapshot.is_incomplete or version != self._snapshot.version:
                genres, sub_genres, moods, instruments = await asyncio.gather(
                    self._source.fetch_genres(),
                    self._source.fetch_sub_genres(),
                    self._source.fetch_moods(),
                    self._source.fetch_instruments(),
                )
                self.load(
                    Taxonomy.from_payload(
                        genres=genres,
                        sub_genres=sub_genres,
                        moods=moods,
                        instruments=instruments,
                        version=version,
                    )
                )
                if settings.ai_debug:
                    logger.info(
                        "Taxonomy refreshed (v=%s genres=%d sub_genres=%d moods=%d instruments=%d)",
                        version,
                        len(genres),
                        len(sub_genres),
                        len(moods),
                        len(instruments),
                    )
            else:
                self._loaded_at = self._clock()
        except UpstreamUnavailable as exc:
            logger.warning("Taxonomy refresh failed (continuing with current cache): %s", exc)
        return self._snapshot

    async def ensure_available(self, session: AsyncSession) -> Taxonomy:
        """Refresh, then fall back to the local taxonomy tables if anything is still missing."""
        await self.ensure_fresh()
        if self._snapshot.is_incomplete:
            await self.hydrate_from_storage(session)
        return self._snapshot

    async def hydrate_from_storage(self, session: AsyncSession) -> bool:
        genres = (await session.execute(select(Genre))).scalars().all()
        sub_genres = (await session.execute(select(SubGenre))).scalars().all()
        moods = (await session.execute(select(Mood))).scalars().all()
        instruments = (await session.execute(select(Instrument))).scalars().all()
        if not (genres or sub_genres or moods or instruments):
            logger.warning("Local taxonomy tables are empty; recommendations run without taxonomy")
            return False
        # No version: the next refresh always re-checks the catalog.
        self.load(
            Taxonomy(
                genres=tuple(TaxonomyEntry(id=g.id, name=g.name) for g in genres),
                sub_genres=tuple(TaxonomyEntry(id=sg.id, name=sg.name, parent_id=sg.genre_id) for sg in sub_genres),
                moods=tuple(TaxonomyEntry(id=m.id, name=m.name) for m in moods),
                instruments=tuple(TaxonomyEntry(id=i.id, name=i.name) for i in instruments),
            )
        )
        logger.info(
            "Taxonomy hydrated from local storage (genres=%d sub_genres=%d moods=%d instruments=%d)",
            len(genres),
            len(sub_genres),
            len(moods),
            len(instruments),
        )
        return True
