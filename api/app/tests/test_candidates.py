from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.core.errors import UpstreamUnavailable
from app.models.catalog import Song
from app.recommender.candidates import (
    CandidateRetriever,
    CatalogCandidateStrategy,
    StorageCandidateStrategy,
    candidate_from_catalog,
    fetch_songs_direct,
    resolve_query,
)
from app.recommender.query_spec import KeyPreference, QuerySpec, TempoWindow
from app.recommender.taxonomy import Taxonomy
from app.tests.utils import GENRES, INSTRUMENTS, MOODS, SUB_GENRES, FakeCatalog, make_song


@pytest.fixture()
def taxonomy() -> Taxonomy:
    return Taxonomy.from_payload(genres=GENRES, sub_genres=SUB_GENRES, moods=MOODS, instruments=INSTRUMENTS)


def test_resolve_query_maps_names_and_siblings(taxonomy):
    spec = QuerySpec(genre="Documentary", sub_genres=["Nature", "Polka"], moods=["calm"], instruments=["Piano"])

    resolved = resolve_query(spec, taxonomy)

    assert resolved.sub_genre_ids == ["sg-nature"]
    assert resolved.sibling_sub_genre_ids == ["sg-history"]
    assert resolved.genre_ids == ["g-doc"]
    assert resolved.mood_ids == ["m-calm"]
    assert resolved.instrument_ids == ["i-piano"]


def test_catalog_adapter_fills_names_for_bare_ids(taxonomy):
    doc = make_song("s1", bpm=88, key="A minor", has_vocals=False, trending=12, plays=40)
    doc["moods"] = ["m-calm"]

    candidate = candidate_from_catalog(doc, taxonomy)

    assert candidate.moods[0].name == "Calm"
    assert candidate.bpm == 88
    assert candidate.trending_score == 12
    assert candidate.total_plays == 40
    assert candidate.created_at == datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_catalog_strategy_dedupes_across_facets(taxonomy):
    shared = make_song("both", sub_genres=["sg-nature"], moods=["m-calm"])
    catalog = FakeCatalog([shared, make_song("mood-only", moods=["m-calm"])])
    spec = QuerySpec(sub_genres=["Nature"], moods=["Calm"])

    strategy = CatalogCandidateStrategy(catalog, min_pool_size=1)
    pool = await strategy.collect(spec, resolve_query(spec, taxonomy), taxonomy)

    assert sorted(c.id for c in pool) == ["both", "mood-only"]
    assert "trending" not in catalog.calls


@pytest.mark.asyncio
async def test_sparse_pool_is_topped_up_with_trending(taxonomy):
    songs = [make_song("nature", sub_genres=["sg-nature"])] + [make_song(f"t{i}", trending=i) for i in range(5)]
    catalog = FakeCatalog(songs)
    spec = QuerySpec(sub_genres=["Nature"])

    pool = await CatalogCandidateStrategy(catalog).collect(spec, resolve_query(spec, taxonomy), taxonomy)

    assert len(pool) == 6
    assert "trending" in catalog.calls


@pytest.mark.asyncio
async def test_one_failing_facet_does_not_abort_the_others(taxonomy):
    catalog = FakeCatalog([make_song("calm", moods=["m-calm"])])

    async def _broken(*args, **kwargs):
        raise UpstreamUnavailable("genre endpoint down")

    catalog.songs_by_genres = _broken
    spec = QuerySpec(sub_genres=["Nature"], moods=["Calm"])

    pool = await CatalogCandidateStrategy(catalog, min_pool_size=1).collect(
        spec, resolve_query(spec, taxonomy), taxonomy
    )

    assert [c.id for c in pool] == ["calm"]


@pytest.mark.asyncio
async def test_catalog_outage_falls_back_to_storage(session, taxonomy):
    session.add_all(
        [
            Song(id="quiet", title="Quiet", has_vocals=False, bpm=72, key="D minor", trending_score=3),
            Song(id="loud", title="Loud", has_vocals=True, bpm=74, key="D minor", trending_score=9),
            Song(id="fast", title="Fast", has_vocals=False, bpm=140, key="E minor", trending_score=8),
        ]
    )
    await session.commit()
    catalog = FakeCatalog()
    catalog.songs_down = True
    spec = QuerySpec(sub_genres=["Nature"], tempo=TempoWindow(target_bpm=75, min=60, max=90), vocals="off")
    retriever = CandidateRetriever([CatalogCandidateStrategy(catalog), StorageCandidateStrategy(session)])

    result = await retriever.collect(spec, taxonomy)

    assert result.source == "storage"
    assert [c.id for c in result.candidates] == ["quiet"]


@pytest.mark.asyncio
async def test_direct_query_orders_by_trending_then_plays(session):
    session.add_all(
        [
            Song(id="a", title="A", trending_score=1, total_plays=100, key="C major"),
            Song(id="b", title="B", trending_score=5, total_plays=1, key="A minor"),
            Song(id="c", title="C", trending_score=1, total_plays=500, key="E minor"),
        ]
    )
    await session.commit()

    songs = await fetch_songs_direct(session, QuerySpec(), limit=10)
    minor = await fetch_songs_direct(session, QuerySpec(key=KeyPreference(mode="minor")), limit=10)

    assert [s.id for s in songs] == ["b", "c", "a"]
    assert [s.id for s in minor] == ["b", "c"]


@pytest.mark.asyncio
async def test_every_tier_failing_yields_empty_pool(taxonomy):
    catalog = FakeCatalog()
    catalog.down = True

    result = await CandidateRetriever([CatalogCandidateStrategy(catalog)]).collect(
        QuerySpec(moods=["Calm"]), taxonomy
    )

    assert result.source == "none"
    assert result.candidates == []
