from __future__ import annotations

from app.recommender.candidates import Candidate
from app.recommender.query_spec import QuerySpec
from app.recommender.ranking import MatchSets

CLOSE_TEMPO_DIFF = 7


def build_why(candidate: Candidate, spec: QuerySpec, matches: MatchSets) -> str:
    """Short human-readable summary of the facets a result matched on."""
    bits: list[str] = []

    sub_hit = next(
        (tag for tag in candidate.sub_genres if tag.id in matches.sub_genres or tag.id in matches.sibling_sub_genres),
        None,
    )
    genre_hit = next((tag for tag in candidate.genres if tag.id in matches.genres), None)
    if sub_hit and sub_hit.name:
        bits.append(sub_hit.name)
    elif genre_hit and genre_hit.name:
        bits.append(genre_hit.name)

    moods = [tag.name for tag in candidate.moods if tag.id in matches.moods and tag.name]
    if moods:
        bits.append("mood: " + ", ".join(moods[:2]))
    instruments = [tag.name for tag in candidate.instruments if tag.id in matches.instruments and tag.name]
    if instruments:
        bits.append("instruments: " + ", ".join(instruments[:2]))

    target = spec.tempo.target_bpm if spec.tempo else None
    if target and candidate.bpm:
        closeness = "close" if abs(candidate.bpm - target) <= CLOSE_TEMPO_DIFF else "near"
        bits.append(f"~{round(candidate.bpm)} BPM ({closeness})")
    if spec.key and spec.key.mode and candidate.key:
        bits.append(candidate.key)
    if spec.vocals == "off" and candidate.has_vocals is False:
        bits.append("instrumental")

    return f"Matches: {', '.join(bits)}" if bits else "Good overall match"
