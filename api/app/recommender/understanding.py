"""Turn a free-text brief into a :class:`QuerySpec`.

Extraction strategies are tried in order; each either returns a spec or
raises ``UpstreamUnavailable``. The LLM strategy goes first and the keyword
heuristic, which never fails, closes the chain.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Protocol, Sequence

from app.core.config import settings
from app.core.errors import UpstreamUnavailable
from app.ingestion.llm import LLMClient
from app.recommender.query_spec import (
    DEFAULT_EXPAND_STEPS,
    DEFAULT_PRIORITY,
    KEY_MODES,
    VOCALS_CHOICES,
    KeyPreference,
    QuerySpec,
    TempoWindow,
)
from app.recommender.taxonomy import Taxonomy

logger = logging.getLogger("app.recommender.understanding")

MAX_LLM_FACET_ITEMS = 5
MAX_HEURISTIC_FACET_ITEMS = 3
MAX_INTENT_CHARS = 400

VOCALS_OFF_PATTERN = re.compile(r"no vocals|without vocals|instrumental", re.IGNORECASE)
VOCALS_ON_PATTERN = re.compile(r"with vocals|singer|vocal", re.IGNORECASE)
KEY_MINOR_PATTERN = re.compile(r"minor", re.IGNORECASE)
KEY_MAJOR_PATTERN = re.compile(r"major", re.IGNORECASE)

# (keyword pattern, target, min, max); first match wins.
TEMPO_BANDS: tuple[tuple[re.Pattern[str], float, float, float], ...] = (
    (re.compile(r"fast|energetic|gym|sports|action|dance|high energy", re.IGNORECASE), 135, 120, 160),
    (re.compile(r"calm|chill|study|focus|soft|slow|ambient|lofi|meditat", re.IGNORECASE), 75, 60, 90),
    (re.compile(r"corporate|tech|product|vlog|travel|tutorial|explainer|learning", re.IGNORECASE), 105, 90, 120),
)

NATURE_WORDS = (
    "nature",
    "wildlife",
    "forest",
    "outdoors",
    "natural",
    "mountain",
    "jungle",
    "park",
    "birdsong",
    "rainforest",
)
NATURE_SUB_GENRE = "nature"
NATURE_PARENT_GENRE = "documentary"


class ExtractionStrategy(Protocol):
    name: str

    async def extract(self, text: str, taxonomy: Taxonomy) -> QuerySpec: ...


def build_system_prompt(vocabulary: dict[str, list[str]]) -> str:
    """Prompt that pins the model to a JSON QuerySpec over the allowed names."""
    return "\n".join(
        [
            "You are VARA's Music Recommender.",
            "Task: Read a short creative brief and extract a strict JSON QuerySpec using ONLY the provided allowed names.",
            "Return ONLY JSON (no prose).",
            "Schema:",
            "{",
            '  "intent": string,',
            '  "genre": string|null,                    // one of allowedGenres',
            '  "subGenres": string[],                   // each in allowedSubGenres (ranked, most relevant first)',
            '  "moods": string[],                       // in allowedMoods',
            '  "instruments": string[],                 // in allowedInstruments',
            '  "tempo": { "targetBpm": number|null, "min": number|null, "max": number|null, "expandSteps": number[] },',
            '  "key": { "mode": "major"|"minor"|null, "preferred": string[] },',
            '  "vocals": "on"|"off"|"any"|null,',
            '  "priority": ["subGenre","mood","genre","tempo","instruments","key"]',
            "}",
            "Rules:",
            "- Use ONLY allowed names below; if unsure, leave field null or [].",
            "- Prefer 1 primary genre and up to 3 sub-genres.",
            "- Infer BPM band and target from the brief (e.g., calm 60-90, corporate 90-120, action 120-160). "
            "Provide min/max and target.",
            '- Keys are in long form (e.g., "C major", "A minor"). Keep "preferred" as hints; mode is sufficient for ranking.',
            '- Vocals: "on" means strictly hasVocals=true; "off" means strictly hasVocals=false; "any" means no filter.',
            "- Keep numbers realistic; if min/max given, ensure min <= target <= max.",
            "",
            "Allowed terms:",
            f"allowedGenres={json.dumps(vocabulary.get('genres', []))}",
            f"allowedSubGenres={json.dumps(vocabulary.get('sub_genres', []))}",
            f"allowedMoods={json.dumps(vocabulary.get('moods', []))}",
            f"allowedInstruments={json.dumps(vocabulary.get('instruments', []))}",
        ]
    )


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _allowed_names(values: Any, taxonomy: Taxonomy, facet: str, limit: int) -> list[str]:
    """Keep only names present in the taxonomy, canonicalized and deduplicated."""
    if not isinstance(values, list):
        return []
    names: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        entry = taxonomy.find(facet, value)
        if entry and entry.name not in names:
            names.append(entry.name)
        if len(names) >= limit:
            break
    return names


def _sanitize_tempo(raw: Any) -> TempoWindow:
    raw = raw if isinstance(raw, dict) else {}
    target = _number(raw.get("targetBpm"))
    low = _number(raw.get("min"))
    high = _number(raw.get("max"))
    steps_raw = raw.get("expandSteps")
    steps = [n for n in (_number(s) for s in steps_raw) if n is not None] if isinstance(steps_raw, list) else []
    if low is not None and high is not None and low > high:
        low, high = high, low
    if target is not None and low is not None and target < low:
        target = low
    if target is not None and high is not None and target > high:
        target = high
    return TempoWindow(target_bpm=target, min=low, max=high, expand_steps=steps or list(DEFAULT_EXPAND_STEPS))


def sanitize_llm_spec(parsed: dict[str, Any], text: str, taxonomy: Taxonomy) -> QuerySpec:
    """Validate a raw model response against the taxonomy and clamp numeric ranges."""
    genre_entry = taxonomy.find("genres", parsed["genre"]) if isinstance(parsed.get("genre"), str) else None
    key_raw = parsed.get("key") if isinstance(parsed.get("key"), dict) else {}
    mode = key_raw.get("mode") if key_raw.get("mode") in KEY_MODES else None
    preferred = key_raw.get("preferred")
    vocals = parsed.get("vocals") if parsed.get("vocals") in VOCALS_CHOICES else None
    priority = parsed.get("priority")
    return QuerySpec(
        intent=str(parsed.get("intent") or text)[:MAX_INTENT_CHARS],
        genre=genre_entry.name if genre_entry else None,
        sub_genres=_allowed_names(parsed.get("subGenres"), taxonomy, "sub_genres", MAX_LLM_FACET_ITEMS),
        moods=_allowed_names(parsed.get("moods"), taxonomy, "moods", MAX_LLM_FACET_ITEMS),
        instruments=_allowed_names(parsed.get("instruments"), taxonomy, "instruments", MAX_LLM_FACET_ITEMS),
        tempo=_sanitize_tempo(parsed.get("tempo")),
        key=KeyPreference(
            mode=mode,
            preferred=[str(p) for p in preferred][:MAX_LLM_FACET_ITEMS] if isinstance(preferred, list) else [],
        ),
        vocals=vocals,
        priority=[str(p) for p in priority][:6] if isinstance(priority, list) else list(DEFAULT_PRIORITY),
    )


class LLMExtractor:
    name = "llm"

    def __init__(self, client: LLMClient) -> None:
        self.client = client

    async def extract(self, text: str, taxonomy: Taxonomy) -> QuerySpec:
        system = build_system_prompt(taxonomy.vocabulary())
        parsed = await self.client.complete_json(system, text)
        try:
            spec = sanitize_llm_spec(parsed, text, taxonomy)
        except (TypeError, ValueError, OverflowError) as exc:
            raise UpstreamUnavailable(f"LLM returned an unusable spec: {exc}") from exc
        if settings.ai_debug:
            logger.info("LLM QuerySpec: %s", spec.to_dict())
        return spec


def _substring_hits(text: str, taxonomy: Taxonomy, facet: str) -> list:
    lowered = text.lower()
    return [entry for entry in getattr(taxonomy, facet) if entry.name and entry.name.lower() in lowered]


def derive_heuristic_spec(text: str, taxonomy: Taxonomy) -> QuerySpec:
    """Keyword-driven spec: taxonomy name substrings plus fixed tempo, key and vocals rules."""
    sub_hits = _substring_hits(text, taxonomy, "sub_genres")
    genre_name: str | None = None
    if sub_hits:
        parent_id = sub_hits[0].parent_id
        parent = taxonomy.get("genres", parent_id) if parent_id else None
        genre_name = parent.name if parent else None
    else:
        genre_hits = _substring_hits(text, taxonomy, "genres")
        genre_name = genre_hits[0].name if genre_hits else None

    tempo: TempoWindow | None = None
    for pattern, target, low, high in TEMPO_BANDS:
        if pattern.search(text):
            tempo = TempoWindow(target_bpm=target, min=low, max=high)
            break

    key: KeyPreference | None = None
    if KEY_MINOR_PATTERN.search(text):
        key = KeyPreference(mode="minor")
    elif KEY_MAJOR_PATTERN.search(text):
        key = KeyPreference(mode="major")

    vocals: str | None = None
    if VOCALS_OFF_PATTERN.search(text):
        vocals = "off"
    elif VOCALS_ON_PATTERN.search(text):
        vocals = "on"

    return QuerySpec(
        intent=text,
        genre=genre_name,
        sub_genres=[entry.name for entry in sub_hits[:MAX_HEURISTIC_FACET_ITEMS]],
        moods=[entry.name for entry in _substring_hits(text, taxonomy, "moods")[:MAX_HEURISTIC_FACET_ITEMS]],
        instruments=[
            entry.name for entry in _substring_hits(text, taxonomy, "instruments")[:MAX_HEURISTIC_FACET_ITEMS]
        ],
        tempo=tempo,
        key=key,
        vocals=vocals,
    )


class HeuristicExtractor:
    name = "heuristic"

    async def extract(self, text: str, taxonomy: Taxonomy) -> QuerySpec:
        return derive_heuristic_spec(text, taxonomy)


def apply_alias_hints(spec: QuerySpec, text: str, taxonomy: Taxonomy) -> QuerySpec:
    """Nudge outdoor/nature briefs toward the nature sub-genre and its documentary parent."""
    lowered = (text or "").lower()
    if not any(word in lowered for word in NATURE_WORDS):
        return spec
    nature = taxonomy.find("sub_genres", NATURE_SUB_GENRE)
    if not nature:
        return spec
    if nature.name not in spec.sub_genres:
        spec.sub_genres.append(nature.name)
    if not spec.genre:
        documentary = taxonomy.find("genres", NATURE_PARENT_GENRE)
        if documentary:
            spec.genre = documentary.name
    return spec


class QueryUnderstanding:
    def __init__(self, strategies: Sequence[ExtractionStrategy]) -> None:
        self.strategies = list(strategies)

    async def extract(self, text: str, taxonomy: Taxonomy, *, vocals: str | None = None) -> QuerySpec:
        """Run the strategy chain, then alias hints, then the caller's vocals toggle."""
        text = str(text or "")
        spec: QuerySpec | None = None
        for strategy in self.strategies:
            try:
                spec = await strategy.extract(text, taxonomy)
            except UpstreamUnavailable as exc:
                logger.warning("Query extraction via %s unavailable; trying next strategy: %s", strategy.name, exc)
                continue
            logger.debug("Query extracted via %s", strategy.name)
            break
        if spec is None:
            raise UpstreamUnavailable("No query extraction strategy succeeded")
        spec = apply_alias_hints(spec, text, taxonomy)
        if vocals in VOCALS_CHOICES:
            spec.vocals = vocals
        return spec


def build_query_understanding(llm: LLMClient) -> QueryUnderstanding:
    return QueryUnderstanding([LLMExtractor(llm), HeuristicExtractor()])
