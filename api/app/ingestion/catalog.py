"""Client for the admin catalog service (taxonomy and song listings)."""

from __future__ import annotations

from typing import Any, Iterable

from app.core.config import settings
from app.ingestion.http import fetch_json
from app.ingestion.observability import UpstreamMonitor, upstream_monitor

CATALOG_HEADERS = {"Accept": "application/json", "User-Agent": "VARA-AI/1.0"}


def _as_list(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    return []


def _joined(ids: Iterable[str]) -> str:
    return ",".join(str(item) for item in ids)


class CatalogClient:
    """Async wrapper over the catalog REST endpoints.

    All calls run through the upstream monitor under the ``catalog`` source,
    so failures and timeouts reach callers as ``UpstreamUnavailable``.
    """

    source_name = "catalog"

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        monitor: UpstreamMonitor | None = None,
    ) -> None:
        self.base_url = (base_url or settings.catalog_base_url).rstrip("/")
        self.timeout = timeout or settings.catalog_timeout_seconds
        self.monitor = monitor or upstream_monitor

    async def _get(self, operation: str, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        return await self.monitor.track(
            self.source_name,
            operation,
            lambda: fetch_json(url, headers=CATALOG_HEADERS, params=params, timeout=self.timeout, attempts=2),
            timeout=self.timeout,
            context={"path": path},
        )

    async def fetch_version(self) -> str | None:
        payload = await self._get("version", "/api/content/version")
        if isinstance(payload, dict) and payload.get("v") is not None:
            return str(payload["v"])
        return None

    async def fetch_genres(self) -> list[dict[str, Any]]:
        return _as_list(await self._get("genres", "/api/genres"))

    async def fetch_sub_genres(self) -> list[dict[str, Any]]:
        return _as_list(await self._get("sub_genres", "/api/subgenres"))

    async def fetch_moods(self) -> list[dict[str, Any]]:
        return _as_list(await self._get("moods", "/api/moods"))

    async def fetch_instruments(self) -> list[dict[str, Any]]:
        return _as_list(await self._get("instruments", "/api/instruments"))

    async def songs_by_genres(
        self,
        *,
        genre_ids: Iterable[str] = (),
        sub_genre_ids: Iterable[str] = (),
        limit: int = 120,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        genres = _joined(genre_ids)
        subs = _joined(sub_genre_ids)
        if genres:
            params["genreIds"] = genres
        if subs:
            params["subGenreIds"] = subs
        return _as_list(await self._get("songs_by_genres", "/api/songs/by-genres", params))

    async def songs_by_moods(self, mood_ids: Iterable[str], limit: int = 100) -> list[dict[str, Any]]:
        ids = _joined(mood_ids)
        if not ids:
            return []
        return _as_list(await self._get("songs_by_moods", "/api/songs/by-moods", {"moodIds": ids, "limit": limit}))

    async def songs_by_instruments(self, instrument_ids: Iterable[str], limit: int = 100) -> list[dict[str, Any]]:
        ids = _joined(instrument_ids)
        if not ids:
            return []
        return _as_list(
            await self._get(
                "songs_by_instruments", "/api/songs/by-instruments", {"instrumentIds": ids, "limit": limit}
            )
        )

    async def trending(self, limit: int = 50) -> list[dict[str, Any]]:
        return _as_list(await self._get("trending", "/api/songs/trending", {"limit": limit}))
