"""Exploration engine — reserves fixed list positions for bandit-style picks.

Without exploration the ranking only ever shows what it already believes is
best, so feedback never reaches lower-ranked programs. A few slots (by default
2 of 10, at indices 3 and 7) are filled from outside the exploit set.
"""

import logging
import random
from dataclasses import dataclass, field, replace

from fundrec.models.enums import ExplorationStrategy

logger = logging.getLogger(__name__)

EPSILON = 0.1  # chance of a pure random pick in epsilon-greedy
UCB_MAX_BONUS = 20.0


class ExplorationConfigError(ValueError):
    """Raised for slot/position configurations that cannot be satisfied."""


@dataclass
class ExplorationConfig:
    total_slots: int = 10
    exploration_slots: int = 2
    exploration_positions: list[int] = field(default_factory=lambda: [3, 7])
    strategy: ExplorationStrategy = ExplorationStrategy.EPSILON_GREEDY

    def validate(self) -> None:
        if self.total_slots < 0 or self.exploration_slots < 0:
            raise ExplorationConfigError("total_slots and exploration_slots must be non-negative")
        if self.exploration_slots > self.total_slots:
            raise ExplorationConfigError("exploration_slots cannot exceed total_slots")
        if len(self.exploration_positions) != self.exploration_slots:
            raise ExplorationConfigError("exploration_positions length must match exploration_slots")
        if any(p < 0 for p in self.exploration_positions):
            raise ExplorationConfigError("exploration_positions must be non-negative")
        try:
            ExplorationStrategy(self.strategy)
        except ValueError:
            raise ExplorationConfigError(f"Unknown exploration strategy: {self.strategy!r}") from None


DEFAULT_EXPLORATION_CONFIG = ExplorationConfig()


@dataclass
class PersonalizedMatch:
    program_id: str
    base_score: float
    personalized_score: float
    breakdown: dict[str, float] = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)
    explanations: list[str] = field(default_factory=list)
    is_exploration: bool = False
    exploration_reason: str | None = None


@dataclass
class ExplorationResult:
    final_matches: list[PersonalizedMatch]
    exploration_count: int
    exploitation_count: int


def inject_exploration_slots(
    ranked: list[PersonalizedMatch],
    candidates: list[PersonalizedMatch],
    config: ExplorationConfig = DEFAULT_EXPLORATION_CONFIG,
    rng: random.Random | None = None,
) -> ExplorationResult:
    """Take the top exploit items from `ranked` and splice exploration picks in.

    `candidates` is the pool to explore from; anything already in the exploit
    set is excluded. Picks are copies flagged with the strategy name; the
    inputs are not modified.
    """
    config.validate()
    rng = rng or random.Random()

    exploit_slots = config.total_slots - config.exploration_slots
    exploit = ranked[:exploit_slots]
    exploit_ids = {m.program_id for m in exploit}

    pool = [c for c in candidates if c.program_id not in exploit_ids]
    picks = select_exploration_candidates(pool, config.exploration_slots, ExplorationStrategy(config.strategy), rng)
    strategy_name = ExplorationStrategy(config.strategy).value
    picks = [replace(p, is_exploration=True, exploration_reason=strategy_name) for p in picks]

    return ExplorationResult(
        final_matches=insert_at_positions(exploit, picks, config.exploration_positions),
        exploration_count=len(picks),
        exploitation_count=len(exploit),
    )


def select_exploration_candidates(
    pool: list[PersonalizedMatch],
    count: int,
    strategy: ExplorationStrategy,
    rng: random.Random,
) -> list[PersonalizedMatch]:
    if not pool or count <= 0:
        return []

    if strategy == ExplorationStrategy.EPSILON_GREEDY:
        return select_epsilon_greedy(pool, count, rng)
    if strategy == ExplorationStrategy.UCB:
        return select_ucb(pool, count, rng)
    return select_random(pool, count, rng)


def select_random(pool: list[PersonalizedMatch], count: int, rng: random.Random) -> list[PersonalizedMatch]:
    return rng.sample(pool, min(count, len(pool)))


def select_epsilon_greedy(pool: list[PersonalizedMatch], count: int, rng: random.Random) -> list[PersonalizedMatch]:
    """With probability EPSILON pick anywhere in the pool, else from its better half."""
    remaining = list(pool)
    selected = []

    while len(selected) < count and remaining:
        if rng.random() < EPSILON:
            index = rng.randrange(len(remaining))
        else:
            better_half = max(len(remaining) // 2, 1)
            index = rng.randrange(better_half)
        selected.append(remaining.pop(index))

    return selected


def select_ucb(pool: list[PersonalizedMatch], count: int, rng: random.Random) -> list[PersonalizedMatch]:
    """Score plus a uniform random bonus.

    Placeholder for real UCB: there are no per-program impression counts here,
    so the confidence term is replaced by noise in [0, UCB_MAX_BONUS).
    """
    scored = [(m.personalized_score + rng.random() * UCB_MAX_BONUS, m) for m in pool]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [m for _, m in scored[:count]]


def insert_at_positions(
    exploit: list[PersonalizedMatch],
    picks: list[PersonalizedMatch],
    positions: list[int],
) -> list[PersonalizedMatch]:
    """Insert picks at ascending positions, clamped to the current list length."""
    result = list(exploit)
    for pick, position in zip(picks, sorted(positions)):
        result.insert(min(position, len(result)), pick)
    return result


def is_exploration_enabled(config: ExplorationConfig | None = None) -> bool:
    return (config or DEFAULT_EXPLORATION_CONFIG).exploration_slots > 0


def no_exploration_config(total_slots: int) -> ExplorationConfig:
    return ExplorationConfig(
        total_slots=total_slots,
        exploration_slots=0,
        exploration_positions=[],
        strategy=ExplorationStrategy.RANDOM,
    )
