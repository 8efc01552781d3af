from __future__ import annotations

import random

import pytest

from fundrec.services.exploration import PersonalizedMatch
from fundrec.services.interleaving import (
    InterleavedResult,
    assignment_bucket,
    balanced_interleave,
    compute_interleaving_metrics,
    get_test_variant,
    interleaving_significance,
    is_in_treatment_group,
    team_draft_interleave,
)


def _ranking(ids: list[str]) -> list[PersonalizedMatch]:
    return [PersonalizedMatch(program_id=pid, base_score=50, personalized_score=50) for pid in ids]


def _random_rankings(rng: random.Random) -> tuple[list[PersonalizedMatch], list[PersonalizedMatch]]:
    universe = [f"p{i}" for i in range(15)]
    a = rng.sample(universe, rng.randint(0, 12))
    b = rng.sample(universe, rng.randint(0, 12))
    return _ranking(a), _ranking(b)


@pytest.mark.parametrize("interleave", [team_draft_interleave, balanced_interleave])
def test_interleaved_list_is_unique_and_attributed(interleave) -> None:
    rng = random.Random(42)
    for _ in range(200):
        a, b = _random_rankings(rng)
        size = rng.randint(0, 15)
        result = interleave(a, b, size, rng)

        ids = [m.program_id for m in result.interleaved]
        assert len(ids) == len(set(ids))
        assert len(ids) <= size
        assert set(result.team_a_items).isdisjoint(result.team_b_items)
        assert set(result.team_a_items) | set(result.team_b_items) == set(ids)

        a_ids = {m.program_id for m in a}
        b_ids = {m.program_id for m in b}
        for match in result.interleaved:
            source = a if match.team == "A" else b
            assert match.program_id in (a_ids if match.team == "A" else b_ids)
            assert source[match.source_rank - 1].program_id == match.program_id


def test_team_draft_fills_list_when_union_is_large_enough() -> None:
    rng = random.Random(0)
    for _ in range(100):
        a, b = _random_rankings(rng)
        union = {m.program_id for m in a} | {m.program_id for m in b}
        size = rng.randint(0, 15)
        result = team_draft_interleave(a, b, size, rng)
        assert len(result.interleaved) == min(size, len(union))


def test_team_draft_alternates_on_disjoint_lists() -> None:
    a = _ranking(["a1", "a2", "a3"])
    b = _ranking(["b1", "b2", "b3"])
    result = team_draft_interleave(a, b, 4, random.Random(1))

    teams = [m.team for m in result.interleaved]
    assert teams[0] == result.starting_team
    assert all(teams[i] != teams[i + 1] for i in range(len(teams) - 1))


def test_team_draft_keeps_picking_after_one_list_runs_out() -> None:
    a = _ranking(["x"])
    b = _ranking(["x", "b1", "b2", "b3"])
    result = team_draft_interleave(a, b, 4, random.Random(5))
    assert [m.program_id for m in result.interleaved][1:] == ["b1", "b2", "b3"]


def test_identical_rankings_give_the_same_items() -> None:
    ranking = _ranking(["p1", "p2", "p3", "p4"])
    result = team_draft_interleave(ranking, ranking, 4, random.Random(9))
    assert [m.program_id for m in result.interleaved] == ["p1", "p2", "p3", "p4"]


def test_metrics_credit_each_team() -> None:
    result = InterleavedResult(team_a_items=["a1", "a2"], team_b_items=["b1"])
    metrics = compute_interleaving_metrics(result, clicks=["a1", "b1", "a2", "zz"], saves=["b1"])

    assert (metrics.team_a_clicks, metrics.team_b_clicks) == (2, 1)
    assert (metrics.team_a_saves, metrics.team_b_saves) == (0, 1)
    # A: 2 points, B: 1 + 3 = 4 points
    assert not metrics.team_a_wins
    assert metrics.delta == pytest.approx(-2 / 6)


def test_metrics_without_engagement() -> None:
    metrics = compute_interleaving_metrics(InterleavedResult(team_a_items=["a"]), [], [])
    assert metrics.delta == 0.0
    assert not metrics.team_a_wins


def test_significance_needs_enough_sessions() -> None:
    result = interleaving_significance([True] * 9)
    assert not result.significant
    assert result.p_value == 1.0
    assert result.win_rate == 0.5


def test_significance_detects_a_clear_winner() -> None:
    result = interleaving_significance([True] * 40 + [False] * 10)
    assert result.significant
    assert result.p_value < 0.001
    assert result.win_rate == pytest.approx(0.8)


def test_significance_even_split() -> None:
    result = interleaving_significance([True, False] * 10)
    assert not result.significant
    assert result.p_value == pytest.approx(1.0)


def test_assignment_is_stable_and_in_range() -> None:
    buckets = [assignment_bucket(f"org-{i}", "ranker-v2") for i in range(500)]
    assert all(0 <= b < 100 for b in buckets)
    assert buckets == [assignment_bucket(f"org-{i}", "ranker-v2") for i in range(500)]
    # Roughly uniform
    assert 150 < sum(1 for b in buckets if b < 50) < 350


def test_treatment_group_bounds() -> None:
    assert not any(is_in_treatment_group(f"org-{i}", "t", 0) for i in range(100))
    assert all(is_in_treatment_group(f"org-{i}", "t", 100) for i in range(100))


def test_test_variant() -> None:
    variant = get_test_variant("org-1", "t", ["control", "treatment"])
    assert variant in {"control", "treatment"}
    assert get_test_variant("org-1", "t", ["control", "treatment"]) == variant
    assert get_test_variant("org-1", "t", ["only"]) == "only"
    with pytest.raises(ValueError):
        get_test_variant("org-1", "t", [])
