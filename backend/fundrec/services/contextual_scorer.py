"""Contextual scorer — deadline urgency, freshness and trending.

Pure function of the program, the current time and a trending-count snapshot.
Output ranges: deadline [0, 5], freshness [0, 3], trending [0, 2], total [-5, 10].
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from fundrec.models.enums import ProgramStatus
from fundrec.models.funding_program import FundingProgram
from fundrec.services.behavioral_scorer import clamp
from fundrec.services.clock import days_between, utcnow

URGENT_DEADLINE_DAYS = 7
SOON_DEADLINE_DAYS = 14
MAX_DEADLINE_BOOST = 5.0

FRESH_DAYS = 7
RECENT_DAYS = 14
MAX_FRESHNESS_BOOST = 3.0

TRENDING_THRESHOLD = 10
MAX_TRENDING_BOOST = 2.0

TOTAL_RANGE = (-5.0, 10.0)


@dataclass
class ContextualBoost:
    boost: float = 0.0
    deadline_boost: float = 0.0
    freshness_boost: float = 0.0
    trending_boost: float = 0.0
    reasons: list[str] = field(default_factory=list)


def days_until_deadline(program: FundingProgram, now: datetime | None = None) -> int | None:
    if not program.deadline:
        return None
    return math.floor(days_between(now or utcnow(), program.deadline))


def days_since_creation(program: FundingProgram, now: datetime | None = None) -> int | None:
    if not program.created_at:
        return None
    return math.floor(days_between(program.created_at, now or utcnow()))


def compute_deadline_boost(program: FundingProgram, now: datetime, reasons: list[str]) -> float:
    if program.status != ProgramStatus.ACTIVE.value:
        return 0.0

    days = days_until_deadline(program, now)
    if days is None or days < 0:
        return 0.0

    if days <= URGENT_DEADLINE_DAYS:
        reasons.append("DEADLINE_URGENT")
        # 7 days -> 2.5, 0 days -> 5
        return MAX_DEADLINE_BOOST * (1 - days / URGENT_DEADLINE_DAYS / 2)

    if days <= SOON_DEADLINE_DAYS:
        reasons.append("DEADLINE_SOON")
        # 14 days -> 1, 8 days -> ~1.86
        return 1 + (SOON_DEADLINE_DAYS - days) / (SOON_DEADLINE_DAYS - URGENT_DEADLINE_DAYS)

    return 0.0


def compute_freshness_boost(program: FundingProgram, now: datetime, reasons: list[str]) -> float:
    days = days_since_creation(program, now)
    if days is None or days < 0:
        return 0.0

    if days <= FRESH_DAYS:
        reasons.append("NEW_PROGRAM")
        return MAX_FRESHNESS_BOOST * (1 - days / FRESH_DAYS / 2)

    if days <= RECENT_DAYS:
        return 0.5 + 0.5 * (RECENT_DAYS - days) / (RECENT_DAYS - FRESH_DAYS)

    return 0.0


def compute_trending_boost(program: FundingProgram, trending_counts: Mapping[str, int], reasons: list[str]) -> float:
    count = trending_counts.get(program.id, 0)
    if count < TRENDING_THRESHOLD:
        return 0.0

    reasons.append("TRENDING")
    return min(MAX_TRENDING_BOOST, math.log(count / TRENDING_THRESHOLD + 1))


def compute_contextual_boost(
    program: FundingProgram,
    trending_counts: Mapping[str, int] | None = None,
    now: datetime | None = None,
) -> ContextualBoost:
    now = now or utcnow()
    reasons: list[str] = []

    deadline_boost = compute_deadline_boost(program, now, reasons)
    freshness_boost = compute_freshness_boost(program, now, reasons)
    trending_boost = compute_trending_boost(program, trending_counts or {}, reasons)

    return ContextualBoost(
        boost=clamp(deadline_boost + freshness_boost + trending_boost, *TOTAL_RANGE),
        deadline_boost=deadline_boost,
        freshness_boost=freshness_boost,
        trending_boost=trending_boost,
        reasons=reasons,
    )


def is_urgent_deadline(program: FundingProgram, now: datetime | None = None) -> bool:
    days = days_until_deadline(program, now)
    return days is not None and 0 <= days <= URGENT_DEADLINE_DAYS


def is_new_program(program: FundingProgram, now: datetime | None = None) -> bool:
    days = days_since_creation(program, now)
    return days is not None and days <= FRESH_DAYS
