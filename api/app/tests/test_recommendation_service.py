from __future__ import annotations

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import NotFound, QuotaExceeded
from app.models.catalog import Song
from app.models.usage import AIQueryUsage
from app.services import taste_profile_service, usage_service
from app.services.recommendation_service import clamp_top_k
from app.tests.utils import create_user, make_song

NATURE_BRIEF = "calm nature documentary, no vocals"


def _nature_catalog(catalog) -> None:
    catalog.songs = [
        make_song(
            f"n{i}",
            genres=["g-doc"],
            sub_genres=["sg-nature"],
            moods=["m-calm"],
            bpm=72 + i,
            has_vocals=False,
            trending=i,
        )
        for i in range(6)
    ] + [
        make_song("sung", genres=["g-doc"], sub_genres=["sg-nature"], moods=["m-calm"], bpm=75, has_vocals=True),
        make_song("history", genres=["g-doc"], sub_genres=["sg-history"], bpm=80, has_vocals=False),
    ]


@pytest.mark.parametrize(("raw", "expected"), [(None, 10), (0, 10), (-3, 1), (7, 7), (50, 20)])
def test_clamp_top_k(raw, expected):
    assert clamp_top_k(raw) == expected


@pytest.mark.asyncio
async def test_recommend_ranks_filters_and_caps_each_sub_genre(session, catalog, recommendation_service):
    _nature_catalog(catalog)
    user = await create_user(session)

    response = await recommendation_service.recommend(session, user, NATURE_BRIEF)

    ids = [item.song_id for item in response.results]
    assert response.source == "catalog"
    assert "sung" not in ids
    assert "history" in ids
    assert sum(1 for song_id in ids if song_id.startswith("n")) == 4
    assert response.results[0].why.startswith("Matches: Nature")
    assert response.results[0].score >= response.results[-1].score
    assert response.intent["vocals"] == "off"


@pytest.mark.asyncio
async def test_recommend_records_usage(session, catalog, recommendation_service):
    _nature_catalog(catalog)
    user = await create_user(session)

    await recommendation_service.recommend(session, user, NATURE_BRIEF, top_k=3)

    usage = await usage_service.get_usage(session, user)
    assert usage.used == 1
    assert usage.remaining == 4


@pytest.mark.asyncio
async def test_exhausted_quota_rejects_before_any_upstream_call(session, catalog, recommendation_service):
    user = await create_user(session)
    session.add_all([AIQueryUsage(user_id=user.id, top_k=10) for _ in range(5)])
    await session.commit()

    with pytest.raises(QuotaExceeded) as excinfo:
        await recommendation_service.recommend(session, user, NATURE_BRIEF)

    assert excinfo.value.usage.to_dict()["used_this_month"] == 5
    assert catalog.calls == []


@pytest.mark.asyncio
async def test_legacy_premium_gets_starter_quota(session, catalog, recommendation_service):
    _nature_catalog(catalog)
    user = await create_user(session, subscription_type="premium")
    session.add_all([AIQueryUsage(user_id=user.id, top_k=10) for _ in range(5)])
    await session.commit()

    response = await recommendation_service.recommend(session, user, NATURE_BRIEF)

    assert response.results


@pytest.mark.asyncio
async def test_usage_write_failure_still_returns_results(session, catalog, recommendation_service, monkeypatch):
    _nature_catalog(catalog)
    user = await create_user(session)

    async def _failing_record(*args, **kwargs):
        raise SQLAlchemyError("usage table locked")

    monkeypatch.setattr(usage_service, "record_usage", _failing_record)

    response = await recommendation_service.recommend(session, user, NATURE_BRIEF)

    assert response.results


@pytest.mark.asyncio
async def test_catalog_outage_serves_from_local_songs(session, catalog, recommendation_service):
    catalog.songs_down = True
    session.add_all(
        [
            Song(id="local-calm", title="Local Calm", bpm=70, has_vocals=False, key="D minor", trending_score=2),
            Song(id="local-fast", title="Local Fast", bpm=150, has_vocals=False, key="E minor", trending_score=9),
        ]
    )
    await session.commit()
    user = await create_user(session)

    response = await recommendation_service.recommend(session, user, NATURE_BRIEF)

    assert response.source == "storage"
    assert [item.song_id for item in response.results] == ["local-calm"]


@pytest.mark.asyncio
async def test_taste_recommendations_need_enough_history(session, recommendation_service):
    user = await create_user(session)

    response = await recommendation_service.recommend_from_taste(session, user)

    assert response.has_recommendations is False
    assert response.reason == "insufficient_history"
    assert response.interaction_count == 0
    assert response.min_required == 5
    assert response.recommendations is None


@pytest.mark.asyncio
async def test_taste_recommendations_use_top_preferences(session, catalog, recommendation_service):
    _nature_catalog(catalog)
    user = await create_user(session)
    genre = {"_id": "g-doc", "name": "Documentary"}
    nature = {"_id": "sg-nature", "name": "Nature", "genre": "g-doc"}
    for _ in range(5):
        await taste_profile_service.record_interaction(session, user.id, "like", [genre], [nature])

    response = await recommendation_service.recommend_from_taste(session, user, top_k=5)

    assert response.has_recommendations is True
    assert response.interaction_count == 5
    assert response.top_sub_genres[0].id == "sg-nature"
    assert response.top_genres[0].name == "Documentary"
    assert response.recommendations.intent["sub_genres"] == ["Nature"]
    assert len(response.recommendations.results) == 5


@pytest.mark.asyncio
async def test_missing_profile_raises_not_found(session):
    user = await create_user(session)

    with pytest.raises(NotFound):
        await taste_profile_service.require_current_profile(session, user.id)


@pytest.mark.asyncio
async def test_taste_query_resolves_names_for_bare_id_history(session, catalog, recommendation_service):
    _nature_catalog(catalog)
    user = await create_user(session)
    for _ in range(5):
        await taste_profile_service.record_interaction(session, user.id, "like", ["g-doc"], ["sg-nature"])

    response = await recommendation_service.recommend_from_taste(session, user, top_k=5)

    assert response.top_sub_genres[0].name == "Nature"
    assert response.top_genres[0].name == "Documentary"
    assert response.recommendations.intent["sub_genres"] == ["Nature"]
    assert response.recommendations.intent["genre"] == "Documentary"
