"""Behavioral scorer — boosts a program by the organization's learned affinities.

Pure function of (program, preferences). Output ranges:
    category  [-10, 10]   (score - 0.5) * 20
    keyword   [0, 10]     mean keyword score over all program keywords * 10
    ministry  [-2.5, 2.5] (score - 0.5) * 5
    total     [-15, 20]
"""

from dataclasses import dataclass, field

from fundrec.models.funding_program import FundingProgram
from fundrec.services.keyword_normalizer import normalize_keyword
from fundrec.services.preference_aggregator import AggregatedPreferences

NEUTRAL = 0.5

CATEGORY_RANGE = (-10.0, 10.0)
KEYWORD_RANGE = (0.0, 10.0)
MINISTRY_RANGE = (-2.5, 2.5)
TOTAL_RANGE = (-15.0, 20.0)

HIGH_AFFINITY = 0.7
LOW_AFFINITY = 0.3
STRONG_KEYWORD = 0.6


@dataclass
class BehavioralBoost:
    boost: float = 0.0
    category_boost: float = 0.0
    keyword_boost: float = 0.0
    ministry_boost: float = 0.0
    reasons: list[str] = field(default_factory=list)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _affinity_boost(score: float, value_range: tuple[float, float]) -> float:
    low, high = value_range
    return clamp((score - NEUTRAL) * (high - low), low, high)


def compute_category_boost(program: FundingProgram, preferences: AggregatedPreferences, reasons: list[str]) -> float:
    if not program.category or not preferences.category_scores:
        return 0.0

    score = preferences.category_scores.get(program.category, NEUTRAL)
    if score >= HIGH_AFFINITY:
        reasons.append("CATEGORY_AFFINITY_HIGH")
    elif score <= LOW_AFFINITY:
        reasons.append("CATEGORY_AFFINITY_LOW")
    return _affinity_boost(score, CATEGORY_RANGE)


def compute_keyword_boost(program: FundingProgram, preferences: AggregatedPreferences, reasons: list[str]) -> float:
    """Average of known keyword scores, divided by ALL program keywords.

    Unknown keywords count as zero, so a program whose keywords are mostly
    unfamiliar gets a small boost even if one keyword is a strong match.
    """
    keywords = program.keywords or []
    if not keywords or not preferences.keyword_scores:
        return 0.0

    total = 0.0
    strong_matches = 0
    for keyword in keywords:
        score = preferences.keyword_scores.get(normalize_keyword(keyword))
        if score is None:
            continue
        total += score
        if score >= STRONG_KEYWORD:
            strong_matches += 1

    average = total / len(keywords)
    if strong_matches:
        reasons.append("KEYWORD_MATCH_STRONG" if average >= 0.5 else "KEYWORD_MATCH_MODERATE")

    low, high = KEYWORD_RANGE
    return clamp(average * high, low, high)


def compute_ministry_boost(program: FundingProgram, preferences: AggregatedPreferences, reasons: list[str]) -> float:
    if not program.ministry or not preferences.ministry_scores:
        return 0.0

    score = preferences.ministry_scores.get(program.ministry, NEUTRAL)
    if score >= HIGH_AFFINITY:
        reasons.append("MINISTRY_PREFERENCE_HIGH")
    elif score <= LOW_AFFINITY:
        reasons.append("MINISTRY_PREFERENCE_LOW")
    return _affinity_boost(score, MINISTRY_RANGE)


def compute_behavioral_boost(program: FundingProgram, preferences: AggregatedPreferences) -> BehavioralBoost:
    reasons: list[str] = []
    category_boost = compute_category_boost(program, preferences, reasons)
    keyword_boost = compute_keyword_boost(program, preferences, reasons)
    ministry_boost = compute_ministry_boost(program, preferences, reasons)

    return BehavioralBoost(
        boost=clamp(category_boost + keyword_boost + ministry_boost, *TOTAL_RANGE),
        category_boost=category_boost,
        keyword_boost=keyword_boost,
        ministry_boost=ministry_boost,
        reasons=reasons,
    )
