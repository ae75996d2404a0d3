"""Candidate filtering, multi-factor scoring, and diversity-capped selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence

from app.recommender.candidates import Candidate, ResolvedQuery
from app.recommender.query_spec import DEFAULT_EXPAND_STEPS, QuerySpec

SUB_GENRE_EXACT_SCORE = 1.0
SUB_GENRE_SIBLING_SCORE = 0.6
GENRE_SCORE = 0.8
MOOD_SCORE_EACH = 0.4
MOOD_SCORE_CAP = 0.8
INSTRUMENT_SCORE_EACH = 0.25
INSTRUMENT_SCORE_CAP = 0.5
KEY_MODE_SCORE = 0.2
POPULARITY_SCORE_MAX = 0.2

# (max |bpm - target|, score), checked in order.
TEMPO_TIERS: tuple[tuple[float, float], ...] = ((3, 0.6), (7, 0.45), (12, 0.3), (20, 0.15))

MIN_DENSITY = 40
DENSITY_PER_RESULT = 4
NO_SUB_GENRE_GROUP = "none"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(slots=True)
class MatchSets:
    """Id sets a candidate's tags are matched against."""

    sub_genres: set[str] = field(default_factory=set)
    sibling_sub_genres: set[str] = field(default_factory=set)
    genres: set[str] = field(default_factory=set)
    moods: set[str] = field(default_factory=set)
    instruments: set[str] = field(default_factory=set)

    @classmethod
    def from_resolved(cls, resolved: ResolvedQuery) -> "MatchSets":
        return cls(
            sub_genres=set(resolved.sub_genre_ids),
            sibling_sub_genres=set(resolved.sibling_sub_genre_ids),
            genres=set(resolved.genre_ids),
            moods=set(resolved.mood_ids),
            instruments=set(resolved.instrument_ids),
        )


@dataclass(slots=True)
class PopularityNormalizers:
    """Per-request maxima so popularity is relative to the current pool."""

    max_trending: float = 0.0
    max_plays: float = 0.0

    @classmethod
    def from_pool(cls, pool: Iterable[Candidate]) -> "PopularityNormalizers":
        max_trending = 0.0
        max_plays = 0.0
        for candidate in pool:
            max_trending = max(max_trending, candidate.trending_score or 0.0)
            max_plays = max(max_plays, candidate.total_plays or 0.0)
        return cls(max_trending=max_trending, max_plays=max_plays)


@dataclass(slots=True)
class ScoredCandidate:
    candidate: Candidate
    score: float


def tempo_score(bpm: float | None, target: float | None) -> float:
    if not bpm or not target:
        return 0.0
    diff = abs(bpm - target)
    for ceiling, points in TEMPO_TIERS:
        if diff <= ceiling:
            return points
    return 0.0


def key_mode_score(key: str | None, mode: str | None) -> float:
    if not mode:
        return 0.0
    return KEY_MODE_SCORE if mode.lower() in (key or "").lower() else 0.0


def popularity_score(candidate: Candidate, normalizers: PopularityNormalizers) -> float:
    """Trending share of the pool maximum, or play-count share when there is no trending signal."""
    if normalizers.max_trending > 0 and candidate.trending_score > 0:
        return candidate.trending_score / normalizers.max_trending * POPULARITY_SCORE_MAX
    if normalizers.max_plays > 0 and candidate.total_plays > 0:
        return candidate.total_plays / normalizers.max_plays * POPULARITY_SCORE_MAX
    return 0.0


def score(
    candidate: Candidate,
    spec: QuerySpec,
    matches: MatchSets,
    normalizers: PopularityNormalizers,
) -> float:
    """Additive score over independent facet, tempo, key and popularity factors."""
    sub_ids = candidate.tag_ids("sub_genres")
    total = 0.0
    if sub_ids & matches.sub_genres:
        total += SUB_GENRE_EXACT_SCORE
    elif sub_ids & matches.sibling_sub_genres:
        total += SUB_GENRE_SIBLING_SCORE
    if candidate.tag_ids("genres") & matches.genres:
        total += GENRE_SCORE
    total += min(MOOD_SCORE_CAP, len(candidate.tag_ids("moods") & matches.moods) * MOOD_SCORE_EACH)
    total += min(
        INSTRUMENT_SCORE_CAP, len(candidate.tag_ids("instruments") & matches.instruments) * INSTRUMENT_SCORE_EACH
    )
    if spec.tempo and spec.tempo.target_bpm:
        total += tempo_score(candidate.bpm, spec.tempo.target_bpm)
    if spec.key:
        total += key_mode_score(candidate.key, spec.key.mode)
    total += popularity_score(candidate, normalizers)
    return total


def filter_by_vocals_and_tempo(pool: Iterable[Candidate], spec: QuerySpec) -> list[Candidate]:
    """Drop candidates contradicting a strict vocals choice or outside the tempo window.

    Candidates with unknown vocals or bpm are kept.
    """
    low = spec.tempo.min if spec.tempo else None
    high = spec.tempo.max if spec.tempo else None
    kept: list[Candidate] = []
    for candidate in pool:
        if spec.vocals == "off" and candidate.has_vocals is True:
            continue
        if spec.vocals == "on" and candidate.has_vocals is False:
            continue
        if candidate.bpm is not None:
            if low is not None and candidate.bpm < low:
                continue
            if high is not None and candidate.bpm > high:
                continue
        kept.append(candidate)
    return kept


def widen_tempo(spec: QuerySpec, delta: float) -> QuerySpec:
    """Return a copy of ``spec`` whose tempo window is ``delta`` wider on both sides."""
    widened = spec.copy()
    if widened.tempo:
        widened.tempo = widened.tempo.widened(delta)
    return widened


def density_target(top_k: int) -> int:
    return max(top_k * DENSITY_PER_RESULT, MIN_DENSITY)


def filter_with_relaxation(pool: Sequence[Candidate], spec: QuerySpec, top_k: int) -> list[Candidate]:
    """Filter, then retry with each configured widening step until the pool is dense enough.

    Each step widens the original window by that step's delta; the last
    attempt's result is returned when no step reaches the target.
    """
    filtered = filter_by_vocals_and_tempo(pool, spec)
    target = density_target(top_k)
    steps = (spec.tempo.expand_steps if spec.tempo and spec.tempo.expand_steps else None) or list(
        DEFAULT_EXPAND_STEPS
    )
    for step in steps:
        if len(filtered) >= target:
            break
        filtered = filter_by_vocals_and_tempo(pool, widen_tempo(spec, step))
    return filtered


def _recency(candidate: Candidate) -> datetime:
    return candidate.created_at or _EPOCH


def rank(pool: Sequence[Candidate], spec: QuerySpec, matches: MatchSets) -> list[ScoredCandidate]:
    """Score the pool and sort by score desc, newer first on ties."""
    normalizers = PopularityNormalizers.from_pool(pool)
    scored = [ScoredCandidate(candidate=c, score=score(c, spec, matches, normalizers)) for c in pool]
    scored.sort(key=lambda item: (item.score, _recency(item.candidate)), reverse=True)
    return scored


def diversity_group(candidate: Candidate) -> str:
    return candidate.sub_genres[0].id if candidate.sub_genres else NO_SUB_GENRE_GROUP


def select_top_with_diversity(
    sorted_pool: Iterable[ScoredCandidate], max_per_group: int = 4, top_k: int = 10
) -> list[ScoredCandidate]:
    """Greedy top-K that admits at most ``max_per_group`` per primary sub-genre."""
    picked: list[ScoredCandidate] = []
    per_group: dict[str, int] = {}
    for item in sorted_pool:
        if len(picked) >= top_k:
            break
        group = diversity_group(item.candidate)
        count = per_group.get(group, 0)
        if count >= max_per_group:
            continue
        per_group[group] = count + 1
        picked.append(item)
    return picked
