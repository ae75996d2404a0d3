"""Shared helpers for API tests."""

from __future__ import annotations

import uuid
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import UpstreamUnavailable
from app.core.security import create_access_token
from app.models.user import User
from app.services import user_service

GENRES = [
    {"_id": "g-doc", "name": "Documentary"},
    {"_id": "g-amb", "name": "Ambient"},
    {"_id": "g-cin", "name": "Cinematic"},
]
SUB_GENRES = [
    {"_id": "sg-nature", "name": "Nature", "genre": {"_id": "g-doc", "name": "Documentary"}},
    {"_id": "sg-history", "name": "History", "genre": "g-doc"},
    {"_id": "sg-drone", "name": "Drone", "genre": "g-amb"},
    {"_id": "sg-space", "name": "Space", "genre": "g-amb"},
    {"_id": "sg-trailer", "name": "Trailer", "genre": "g-cin"},
]
MOODS = [
    {"_id": "m-calm", "name": "Calm"},
    {"_id": "m-peace", "name": "Peaceful"},
    {"_id": "m-dark", "name": "Dark"},
]
INSTRUMENTS = [
    {"_id": "i-piano", "name": "Piano"},
    {"_id": "i-pad", "name": "Synth Pad"},
    {"_id": "i-strings", "name": "Strings"},
]

_NAMES = {item["_id"]: item["name"] for item in GENRES + SUB_GENRES + MOODS + INSTRUMENTS}


def tag(tag_id: str) -> dict[str, str]:
    return {"_id": tag_id, "name": _NAMES.get(tag_id, tag_id)}


def make_song(
    song_id: str,
    *,
    genres: Iterable[str] = (),
    sub_genres: Iterable[str] = (),
    moods: Iterable[str] = (),
    instruments: Iterable[str] = (),
    bpm: float | None = None,
    key: str | None = None,
    has_vocals: bool | None = None,
    trending: float = 0,
    plays: int = 0,
    created_at: str | None = None,
) -> dict[str, Any]:
    """Catalog-shaped song document."""
    return {
        "_id": song_id,
        "title": f"Song {song_id}",
        "imageUrl": f"https://cdn.example.com/{song_id}.jpg",
        "audioUrl": f"https://cdn.example.com/{song_id}.mp3",
        "collectionType": "free",
        "genres": [tag(g) for g in genres],
        "subGenres": [tag(s) for s in sub_genres],
        "moods": [tag(m) for m in moods],
        "instruments": [tag(i) for i in instruments],
        "bpm": bpm,
        "key": key,
        "hasVocals": has_vocals,
        "analytics": {"trendingScore": trending, "totalPlays": plays},
        "createdAt": created_at or "2025-01-01T00:00:00Z",
    }


class FakeCatalog:
    """In-memory stand-in for the catalog service (taxonomy and song listings)."""

    def __init__(self, songs: list[dict[str, Any]] | None = None, *, version: str = "1") -> None:
        self.songs = list(songs or [])
        self.version = version
        self.genres = list(GENRES)
        self.sub_genres = list(SUB_GENRES)
        self.moods = list(MOODS)
        self.instruments = list(INSTRUMENTS)
        self.down = False
        self.songs_down = False
        self.calls: list[str] = []

    def _check(self, operation: str, *, songs: bool = False) -> None:
        self.calls.append(operation)
        if self.down or (songs and self.songs_down):
            raise UpstreamUnavailable(f"catalog.{operation} unavailable")

    async def fetch_version(self) -> str | None:
        self._check("version")
        return self.version

    async def fetch_genres(self) -> list[dict[str, Any]]:
        self._check("genres")
        return list(self.genres)

    async def fetch_sub_genres(self) -> list[dict[str, Any]]:
        self._check("sub_genres")
        return list(self.sub_genres)

    async def fetch_moods(self) -> list[dict[str, Any]]:
        self._check("moods")
        return list(self.moods)

    async def fetch_instruments(self) -> list[dict[str, Any]]:
        self._check("instruments")
        return list(self.instruments)

    def _matching(self, field: str, ids: Iterable[str], limit: int) -> list[dict[str, Any]]:
        wanted = set(ids)
        hits = [song for song in self.songs if wanted & {t["_id"] for t in song.get(field) or []}]
        return hits[:limit]

    async def songs_by_genres(
        self, *, genre_ids: Iterable[str] = (), sub_genre_ids: Iterable[str] = (), limit: int = 120
    ) -> list[dict[str, Any]]:
        self._check("songs_by_genres", songs=True)
        genre_ids, sub_genre_ids = list(genre_ids), list(sub_genre_ids)
        if sub_genre_ids:
            return self._matching("subGenres", sub_genre_ids, limit)
        return self._matching("genres", genre_ids, limit)

    async def songs_by_moods(self, mood_ids: Iterable[str], limit: int = 100) -> list[dict[str, Any]]:
        self._check("songs_by_moods", songs=True)
        return self._matching("moods", mood_ids, limit)

    async def songs_by_instruments(self, instrument_ids: Iterable[str], limit: int = 100) -> list[dict[str, Any]]:
        self._check("songs_by_instruments", songs=True)
        return self._matching("instruments", instrument_ids, limit)

    async def trending(self, limit: int = 50) -> list[dict[str, Any]]:
        self._check("trending", songs=True)
        ranked = sorted(self.songs, key=lambda song: song["analytics"]["trendingScore"], reverse=True)
        return ranked[:limit]


async def create_user(
    session: AsyncSession, *, prefix: str = "user", subscription_type: str = "free", is_premium: bool = False
) -> User:
    suffix = uuid.uuid4().hex[:8]
    return await user_service.create_user(
        session,
        f"{prefix}_{suffix}@example.com",
        display_name=f"{prefix.title()} {suffix}",
        subscription_type=subscription_type,
        is_premium=is_premium,
    )


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}
