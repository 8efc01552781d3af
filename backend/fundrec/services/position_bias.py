"""Position debiasing for engagement signals.

Two curves live here:

- `position_bias_factor(position, list_size)` — continuous logarithmic curve
  used by the preference aggregator. Position 0 gets 1.0 and the factor
  decreases monotonically toward the end of the list.
- `cascade_bias_factor(position)` — lookup table from the cascade click model
  (P(click | rank k) ∝ 1/k^α, α ≈ 1) used for rollup metrics.
"""

import math
from dataclasses import dataclass
from typing import Iterable


@dataclass
class Engagement:
    position: int
    list_size: int
    engaged: bool


def position_bias_factor(position: int, list_size: int) -> float:
    if list_size <= 1:
        return 1.0

    normalized = max(0.0, min(1.0, position / (list_size - 1)))
    return 1.0 / (1.0 + math.log(1.0 + normalized * 10))


def adjusted_rate(engagements: Iterable[Engagement]) -> float:
    """Engagement rate with each observation weighted by its position factor."""
    weighted_engaged = 0.0
    total_weight = 0.0

    for e in engagements:
        weight = position_bias_factor(e.position, e.list_size)
        total_weight += weight
        if e.engaged:
            weighted_engaged += weight

    return weighted_engaged / total_weight if total_weight > 0 else 0.0


# 1-indexed rank → relative examination probability
CASCADE_BIAS_FACTORS: dict[int, float] = {
    1: 1.0,
    2: 0.85,
    3: 0.72,
    4: 0.62,
    5: 0.53,
    6: 0.46,
    7: 0.40,
    8: 0.35,
    9: 0.31,
    10: 0.27,
}
CASCADE_FLOOR = 0.25


def cascade_bias_factor(rank: int) -> float:
    if rank <= 0:
        return 1.0
    return CASCADE_BIAS_FACTORS.get(rank, CASCADE_FLOOR)


def compute_debiased_rate(events: Iterable[tuple[int, str]], target_type: str) -> float:
    """Share of `target_type` events, each weighted by inverse cascade factor.

    `events` yields (rank, event_type) pairs.
    """
    weighted_hits = 0.0
    total_weight = 0.0

    for rank, event_type in events:
        weight = 1.0 / cascade_bias_factor(rank)
        total_weight += weight
        if event_type == target_type:
            weighted_hits += weight

    return weighted_hits / total_weight if total_weight > 0 else 0.0
