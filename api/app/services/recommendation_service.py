"""Recommendation orchestration: quota, understanding, retrieval, ranking, explanation."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import NotFound, QuotaExceeded
from app.ingestion import get_catalog_client, get_llm_client
from app.models.user import User
from app.recommender.candidates import (
    CandidateRetriever,
    CandidateSource,
    CatalogCandidateStrategy,
    StorageCandidateStrategy,
    TagRef,
)
from app.recommender.explain import build_why
from app.recommender.query_spec import QuerySpec
from app.recommender.ranking import (
    MatchSets,
    ScoredCandidate,
    filter_with_relaxation,
    rank,
    select_top_with_diversity,
)
from app.recommender.taxonomy import Taxonomy, TaxonomyCache
from app.recommender.understanding import QueryUnderstanding, build_query_understanding
from app.schema.recommendation import (
    DEFAULT_TOP_K,
    MAX_TOP_K,
    RecommendationItem,
    RecommendationResponse,
    TagRead,
    TasteRecommendationResponse,
    TopPreference,
)
from app.services import taste_profile_service, usage_service

logger = logging.getLogger("app.services.recommendation")

TASTE_TOP_SUB_GENRES = 3
TASTE_TOP_GENRES = 2


def clamp_top_k(top_k: int | None) -> int:
    if not top_k:
        return DEFAULT_TOP_K
    return max(1, min(int(top_k), MAX_TOP_K))


def _taste_name(taxonomy: Taxonomy, facet: str, entry_id: str, stored_name: str | None) -> str:
    """Current taxonomy name for a stored id, else the name recorded with the interaction."""
    return taxonomy.name_for(facet, entry_id) or stored_name or ""


def _tags(tags: list[TagRef]) -> list[TagRead]:
    return [TagRead(id=tag.id, name=tag.name) for tag in tags]


def _to_item(item: ScoredCandidate, spec: QuerySpec, matches: MatchSets) -> RecommendationItem:
    candidate = item.candidate
    return RecommendationItem(
        song_id=candidate.id,
        title=candidate.title,
        image_url=candidate.image_url,
        audio_url=candidate.audio_url,
        bpm=candidate.bpm,
        key=candidate.key,
        has_vocals=candidate.has_vocals,
        collection_type=candidate.collection_type,
        genres=_tags(candidate.genres),
        sub_genres=_tags(candidate.sub_genres),
        moods=_tags(candidate.moods),
        instruments=_tags(candidate.instruments),
        score=round(item.score, 4),
        why=build_why(candidate, spec, matches),
    )


class RecommendationService:
    """Runs a :class:`QuerySpec` through retrieval and ranking.

    Collaborators are injected so routes and tests can swap the catalog,
    LLM and taxonomy cache.
    """

    def __init__(
        self,
        catalog: CandidateSource,
        taxonomy: TaxonomyCache,
        understanding: QueryUnderstanding,
        *,
        max_per_sub_genre: int | None = None,
    ) -> None:
        self.catalog = catalog
        self.taxonomy = taxonomy
        self.understanding = understanding
        self.max_per_sub_genre = max_per_sub_genre or settings.recommendation_max_per_sub_genre

    def _retriever(self, session: AsyncSession) -> CandidateRetriever:
        return CandidateRetriever([CatalogCandidateStrategy(self.catalog), StorageCandidateStrategy(session)])

    async def run_query(
        self, session: AsyncSession, spec: QuerySpec, taxonomy: Taxonomy, top_k: int
    ) -> RecommendationResponse:
        """Collect, filter with tempo relaxation, score, and pick a diverse top-K."""
        retrieval = await self._retriever(session).collect(spec, taxonomy)
        filtered = filter_with_relaxation(retrieval.candidates, spec, top_k)
        matches = MatchSets.from_resolved(retrieval.resolved)
        picked = select_top_with_diversity(rank(filtered, spec, matches), self.max_per_sub_genre, top_k)
        if settings.ai_debug:
            logger.info(
                "Ranked %d/%d candidates from %s into %d results",
                len(filtered),
                len(retrieval.candidates),
                retrieval.source,
                len(picked),
            )
        return RecommendationResponse(
            intent=spec.to_dict(),
            source=retrieval.source,
            total_candidates=len(retrieval.candidates),
            filtered_count=len(filtered),
            results=[_to_item(item, spec, matches) for item in picked],
        )

    async def recommend(
        self,
        session: AsyncSession,
        user: User,
        query_text: str,
        *,
        vocals: str | None = None,
        top_k: int | None = None,
        now: datetime | None = None,
    ) -> RecommendationResponse:
        usage = await usage_service.get_usage(session, user, now=now)
        if usage.exhausted:
            raise QuotaExceeded(usage)

        limit = clamp_top_k(top_k)
        taxonomy = await self.taxonomy.ensure_available(session)
        spec = await self.understanding.extract(query_text, taxonomy, vocals=vocals)
        response = await self.run_query(session, spec, taxonomy, limit)
        await self._record_usage(session, user, limit, now=now)
        return response

    async def _record_usage(
        self, session: AsyncSession, user: User, top_k: int, *, now: datetime | None = None
    ) -> None:
        try:
            await usage_service.record_usage(session, user, top_k, now=now)
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("Failed to record AI usage for user %s: %s", user.id, exc)

    async def recommend_from_taste(
        self, session: AsyncSession, user: User, *, top_k: int | None = None
    ) -> TasteRecommendationResponse:
        """Recommend from the user's top sub-genres and genres once there is enough history."""
        minimum = settings.taste_min_interactions
        try:
            profile = await taste_profile_service.require_current_profile(session, user.id)
        except NotFound:
            profile = None
        interactions = profile.total_interactions if profile else 0
        if profile is None or interactions < minimum:
            return TasteRecommendationResponse(
                has_recommendations=False,
                reason="insufficient_history",
                interaction_count=interactions,
                min_required=minimum,
            )

        taxonomy = await self.taxonomy.ensure_available(session)
        top_sub_genres = [
            TopPreference(
                id=entry["sub_genre_id"],
                name=_taste_name(taxonomy, "sub_genres", entry["sub_genre_id"], entry.get("sub_genre_name")),
                score=entry["score"],
            )
            for entry in taste_profile_service.get_top(profile, "sub_genres", TASTE_TOP_SUB_GENRES)
        ]
        top_genres = [
            TopPreference(
                id=entry["genre_id"],
                name=_taste_name(taxonomy, "genres", entry["genre_id"], entry.get("genre_name")),
                score=entry["score"],
            )
            for entry in taste_profile_service.get_top(profile, "genres", TASTE_TOP_GENRES)
        ]
        spec = QuerySpec(
            intent="taste profile",
            genre=(top_genres[0].name or None) if top_genres else None,
            sub_genres=[pref.name for pref in top_sub_genres if pref.name],
        )
        recommendations = await self.run_query(session, spec, taxonomy, clamp_top_k(top_k))
        return TasteRecommendationResponse(
            has_recommendations=True,
            interaction_count=interactions,
            top_sub_genres=top_sub_genres,
            top_genres=top_genres,
            last_updated_at=profile.last_updated_at,
            recommendations=recommendations,
        )


_TAXONOMY_CACHE: TaxonomyCache | None = None


def get_taxonomy_cache() -> TaxonomyCache:
    """Return the process-wide taxonomy cache backed by the catalog client."""
    global _TAXONOMY_CACHE
    if _TAXONOMY_CACHE is None:
        _TAXONOMY_CACHE = TaxonomyCache(get_catalog_client())
    return _TAXONOMY_CACHE


def build_recommendation_service() -> RecommendationService:
    return RecommendationService(
        catalog=get_catalog_client(),
        taxonomy=get_taxonomy_cache(),
        understanding=build_query_understanding(get_llm_client()),
    )
