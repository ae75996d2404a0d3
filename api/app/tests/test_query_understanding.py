from __future__ import annotations

import json

import pytest

from app.core.config import settings
from app.core.errors import UpstreamUnavailable
from app.ingestion.llm import LLMClient
from app.ingestion.observability import UpstreamMonitor
from app.recommender.taxonomy import Taxonomy
from app.recommender.understanding import (
    HeuristicExtractor,
    LLMExtractor,
    QueryUnderstanding,
    build_system_prompt,
    derive_heuristic_spec,
    sanitize_llm_spec,
)
from app.tests.utils import GENRES, INSTRUMENTS, MOODS, SUB_GENRES


@pytest.fixture()
def taxonomy() -> Taxonomy:
    return Taxonomy.from_payload(
        genres=GENRES, sub_genres=SUB_GENRES, moods=MOODS, instruments=INSTRUMENTS, version="1"
    )


class StubLLM:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.prompts: list[str] = []

    async def complete_json(self, system: str, user: str):
        self.prompts.append(system)
        if self.error:
            raise self.error
        return self.response


def test_heuristic_calm_instrumental_brief(taxonomy):
    spec = derive_heuristic_spec("calm ambient music for meditation, no vocals", taxonomy)

    assert spec.vocals == "off"
    assert spec.tempo is not None
    assert 60 <= spec.tempo.target_bpm <= 90
    assert spec.tempo.min == 60 and spec.tempo.max == 90
    assert spec.genre == "Ambient"
    assert spec.moods == ["Calm"]


def test_heuristic_picks_energetic_band_and_minor_key(taxonomy):
    spec = derive_heuristic_spec("Fast dark trailer in a minor key with strings", taxonomy)

    assert spec.tempo.target_bpm == 135
    assert (spec.tempo.min, spec.tempo.max) == (120, 160)
    assert spec.key.mode == "minor"
    assert spec.sub_genres == ["Trailer"]
    assert spec.genre == "Cinematic"
    assert spec.instruments == ["Strings"]
    assert spec.moods == ["Dark"]


def test_heuristic_vocal_phrases(taxonomy):
    assert derive_heuristic_spec("explainer track with vocals", taxonomy).vocals == "on"
    assert derive_heuristic_spec("instrumental vocal-free bed", taxonomy).vocals == "off"
    assert derive_heuristic_spec("something for a podcast", taxonomy).vocals is None


def test_heuristic_corporate_band(taxonomy):
    spec = derive_heuristic_spec("upbeat corporate product demo in C major", taxonomy)

    assert spec.tempo.target_bpm == 105
    assert spec.key.mode == "major"


def test_sanitize_drops_unknown_names_and_clamps_tempo(taxonomy):
    parsed = {
        "intent": "forest walk",
        "genre": "documentary",
        "subGenres": ["nature", "Polka", "History", "Space", "Drone", "Trailer", "Nature"],
        "moods": ["calm", "sparkly"],
        "instruments": ["PIANO", 7],
        "tempo": {"targetBpm": 200, "min": 110, "max": 70, "expandSteps": [4, "x", 8]},
        "key": {"mode": "dorian", "preferred": ["D dorian"]},
        "vocals": "maybe",
    }

    spec = sanitize_llm_spec(parsed, "forest walk", taxonomy)

    assert spec.genre == "Documentary"
    assert spec.sub_genres == ["Nature", "History", "Space", "Drone", "Trailer"]
    assert spec.moods == ["Calm"]
    assert spec.instruments == ["Piano"]
    assert (spec.tempo.min, spec.tempo.max, spec.tempo.target_bpm) == (70, 110, 110)
    assert spec.tempo.expand_steps == [4, 8]
    assert spec.key.mode is None
    assert spec.vocals is None


def test_system_prompt_lists_allowed_names(taxonomy):
    prompt = build_system_prompt(taxonomy.vocabulary())

    assert json.dumps(["Documentary", "Ambient", "Cinematic"]) in prompt
    assert "allowedInstruments=" in prompt


@pytest.mark.asyncio
async def test_llm_result_is_used_when_available(taxonomy):
    llm = StubLLM({"genre": "Ambient", "subGenres": ["Drone"], "vocals": "on", "tempo": {"targetBpm": 70}})
    understanding = QueryUnderstanding([LLMExtractor(llm), HeuristicExtractor()])

    spec = await understanding.extract("drone bed, no vocals", taxonomy)

    assert spec.sub_genres == ["Drone"]
    assert spec.vocals == "on"
    assert "allowedSubGenres" in llm.prompts[0]


@pytest.mark.asyncio
async def test_llm_failure_falls_back_to_heuristic(taxonomy):
    llm = StubLLM(error=UpstreamUnavailable("timeout"))
    understanding = QueryUnderstanding([LLMExtractor(llm), HeuristicExtractor()])

    spec = await understanding.extract("calm ambient music for meditation, no vocals", taxonomy)

    assert spec.vocals == "off"
    assert 60 <= spec.tempo.target_bpm <= 90


@pytest.mark.asyncio
async def test_missing_api_key_falls_back_to_heuristic(taxonomy, monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", None)
    understanding = QueryUnderstanding(
        [LLMExtractor(LLMClient(api_key="", monitor=UpstreamMonitor())), HeuristicExtractor()]
    )

    spec = await understanding.extract("chill space ambient", taxonomy)

    assert spec.sub_genres == ["Space"]
    assert spec.genre == "Ambient"


@pytest.mark.asyncio
async def test_caller_vocals_toggle_overrides_extraction(taxonomy):
    understanding = QueryUnderstanding([HeuristicExtractor()])

    spec = await understanding.extract("instrumental history montage", taxonomy, vocals="on")

    assert spec.vocals == "on"


@pytest.mark.asyncio
async def test_nature_words_add_nature_sub_genre_and_parent(taxonomy):
    understanding = QueryUnderstanding([HeuristicExtractor()])

    spec = await understanding.extract("rainforest wildlife reel", taxonomy)

    assert "Nature" in spec.sub_genres
    assert spec.genre == "Documentary"


@pytest.mark.asyncio
async def test_no_strategy_succeeding_raises(taxonomy):
    understanding = QueryUnderstanding([LLMExtractor(StubLLM(error=UpstreamUnavailable("down")))])

    with pytest.raises(UpstreamUnavailable):
        await understanding.extract("anything", taxonomy)


def test_sanitize_ignores_numbers_too_large_for_float(taxonomy):
    parsed = {"tempo": {"targetBpm": 10**400, "min": 60, "max": 90, "expandSteps": [10**400, 5]}}

    spec = sanitize_llm_spec(parsed, "huge tempo", taxonomy)

    assert spec.tempo.target_bpm is None
    assert (spec.tempo.min, spec.tempo.max) == (60, 90)
    assert spec.tempo.expand_steps == [5]


@pytest.mark.asyncio
async def test_unusable_llm_numbers_fall_back_to_heuristic(taxonomy, monkeypatch):
    from app.recommender import understanding as understanding_module

    def _exploding_sanitize(parsed, text, taxonomy):
        raise OverflowError("int too large to convert to float")

    monkeypatch.setattr(understanding_module, "sanitize_llm_spec", _exploding_sanitize)
    llm = StubLLM({"tempo": {"targetBpm": 10**400, "min": 60, "max": 90}})
    understanding = QueryUnderstanding([LLMExtractor(llm), HeuristicExtractor()])

    spec = await understanding.extract("calm ambient music for meditation, no vocals", taxonomy)

    assert spec.vocals == "off"
    assert spec.tempo.target_bpm == 75
