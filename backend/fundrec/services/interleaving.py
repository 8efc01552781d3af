"""Interleaving experiments — compare two rankings inside a single result list.

Team-draft interleaving (Radlinski et al., 2008) is far more sensitive than a
split A/B test because both rankings are shown to the same organization in the
same session. Engagement on each item is credited to the team that placed it.
"""

import hashlib
import math
import random
from dataclasses import dataclass, field
from typing import Literal

from fundrec.services.exploration import PersonalizedMatch

Team = Literal["A", "B"]

CLICK_WEIGHT = 1
SAVE_WEIGHT = 3
MIN_SESSIONS_FOR_SIGNIFICANCE = 10
BUCKET_COUNT = 100


@dataclass
class InterleavedMatch(PersonalizedMatch):
    team: Team = "A"
    source_rank: int = 0  # 1-indexed rank in the team's own list


@dataclass
class InterleavedResult:
    interleaved: list[InterleavedMatch] = field(default_factory=list)
    team_a_items: list[str] = field(default_factory=list)
    team_b_items: list[str] = field(default_factory=list)
    starting_team: Team = "A"

    def place(self, candidate: PersonalizedMatch, team: Team, source_rank: int) -> None:
        self.interleaved.append(InterleavedMatch(**vars(candidate), team=team, source_rank=source_rank))
        (self.team_a_items if team == "A" else self.team_b_items).append(candidate.program_id)


@dataclass
class InterleavingMetrics:
    team_a_clicks: int
    team_b_clicks: int
    team_a_saves: int
    team_b_saves: int
    team_a_wins: bool
    delta: float


@dataclass
class SignificanceResult:
    significant: bool
    p_value: float
    win_rate: float
    sessions: int = 0


def _other(team: Team) -> Team:
    return "B" if team == "A" else "A"


def team_draft_interleave(
    ranking_a: list[PersonalizedMatch],
    ranking_b: list[PersonalizedMatch],
    list_size: int,
    rng: random.Random | None = None,
) -> InterleavedResult:
    """Alternate picks, each team taking its best item not already placed.

    The starting team is random. A team whose list is exhausted forfeits its
    turn, so the other team keeps picking until the list is full.
    """
    rng = rng or random.Random()
    rankings = {"A": ranking_a, "B": ranking_b}
    pointers = {"A": 0, "B": 0}
    seen: set[str] = set()

    turn: Team = "A" if rng.random() < 0.5 else "B"
    result = InterleavedResult(starting_team=turn)

    while len(result.interleaved) < list_size and (
        pointers["A"] < len(ranking_a) or pointers["B"] < len(ranking_b)
    ):
        ranking = rankings[turn]
        while pointers[turn] < len(ranking):
            candidate = ranking[pointers[turn]]
            pointers[turn] += 1
            if candidate.program_id not in seen:
                seen.add(candidate.program_id)
                result.place(candidate, turn, pointers[turn])
                break
        turn = _other(turn)

    return result


def balanced_interleave(
    ranking_a: list[PersonalizedMatch],
    ranking_b: list[PersonalizedMatch],
    list_size: int,
    rng: random.Random | None = None,
) -> InterleavedResult:
    """Strict alternation by index, falling back to whichever list has items left.

    Unlike team-draft, a duplicate still consumes the team's turn.
    """
    rng = rng or random.Random()
    rankings = {"A": ranking_a, "B": ranking_b}
    indexes = {"A": 0, "B": 0}
    seen: set[str] = set()

    starting: Team = "A" if rng.random() < 0.5 else "B"
    result = InterleavedResult(starting_team=starting)
    preferred = starting

    while len(result.interleaved) < list_size:
        if indexes[preferred] < len(rankings[preferred]):
            team = preferred
        elif indexes[_other(preferred)] < len(rankings[_other(preferred)]):
            team = _other(preferred)
        else:
            break

        candidate = rankings[team][indexes[team]]
        indexes[team] += 1
        if candidate.program_id not in seen:
            seen.add(candidate.program_id)
            result.place(candidate, team, indexes[team])
        preferred = _other(preferred)

    return result


def compute_interleaving_metrics(
    result: InterleavedResult,
    clicks: list[str],
    saves: list[str],
) -> InterleavingMetrics:
    team_a = set(result.team_a_items)
    team_b = set(result.team_b_items)

    a_clicks = sum(1 for pid in clicks if pid in team_a)
    b_clicks = sum(1 for pid in clicks if pid in team_b)
    a_saves = sum(1 for pid in saves if pid in team_a)
    b_saves = sum(1 for pid in saves if pid in team_b)

    a_score = a_clicks * CLICK_WEIGHT + a_saves * SAVE_WEIGHT
    b_score = b_clicks * CLICK_WEIGHT + b_saves * SAVE_WEIGHT
    total = a_score + b_score

    return InterleavingMetrics(
        team_a_clicks=a_clicks,
        team_b_clicks=b_clicks,
        team_a_saves=a_saves,
        team_b_saves=b_saves,
        team_a_wins=a_score > b_score,
        delta=(a_score - b_score) / total if total > 0 else 0.0,
    )


def normal_cdf(z: float) -> float:
    return 0.5 * (1.0 + math.erf(z / math.sqrt(2)))


def interleaving_significance(session_outcomes: list[bool], alpha: float = 0.05) -> SignificanceResult:
    """Two-tailed sign test (normal approximation) on per-session A-won outcomes."""
    n = len(session_outcomes)
    if n < MIN_SESSIONS_FOR_SIGNIFICANCE:
        return SignificanceResult(significant=False, p_value=1.0, win_rate=0.5, sessions=n)

    a_wins = sum(1 for won in session_outcomes if won)
    z = abs(a_wins - n * 0.5) / math.sqrt(n * 0.25)
    p_value = max(0.0, min(1.0, 2 * (1 - normal_cdf(z))))

    return SignificanceResult(
        significant=p_value < alpha,
        p_value=p_value,
        win_rate=a_wins / n,
        sessions=n,
    )


def _stable_hash(organization_id: str, test_name: str) -> int:
    """First 32 bits of SHA-256("{org}:{test}"), identical on every platform."""
    digest = hashlib.sha256(f"{organization_id}:{test_name}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


def assignment_bucket(organization_id: str, test_name: str) -> int:
    return _stable_hash(organization_id, test_name) % BUCKET_COUNT


def is_in_treatment_group(organization_id: str, test_name: str, traffic_percentage: float) -> bool:
    return assignment_bucket(organization_id, test_name) < traffic_percentage


def get_test_variant(organization_id: str, test_name: str, variants: list[str]) -> str:
    if not variants:
        raise ValueError("At least one variant required")
    return variants[_stable_hash(organization_id, test_name) % len(variants)]
