"""Item-item collaborative filtering — "organizations that saved X also saved Y".

Scoring reads the precomputed `program_co_occurrences` table; the table itself
is rebuilt nightly by `compute_co_occurrences` from SAVE events.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import combinations

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from fundrec.config import get_settings
from fundrec.models.enums import EventType
from fundrec.models.program_co_occurrence import ProgramCoOccurrence
from fundrec.models.recommendation_event import RecommendationEvent
from fundrec.services.clock import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_BOOST = 15.0
SCALE_FACTOR = 3.0
MIN_CO_SAVE_COUNT = 2
MIN_CONFIDENCE = 0.1
MAX_CO_OCCURRENCES = 10

WILSON_Z = 1.96  # 95% confidence
WILSON_MAX_PHAT = 0.99


@dataclass
class CoOccurrenceStats:
    program_id: str  # the *other* program in the pair
    co_save_count: int
    co_view_count: int
    confidence: float


@dataclass
class CFBoost:
    boost: float = 0.0
    related_programs: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)


def weighted_score(co_occurrences: list[CoOccurrenceStats]) -> tuple[float, list[str]]:
    """Confidence-weighted mean co-save count on a log scale, capped at MAX_BOOST."""
    total_weight = sum(co.confidence for co in co_occurrences)
    if not co_occurrences or total_weight <= 0:
        return 0.0, []

    avg_co_save = sum(co.co_save_count * co.confidence for co in co_occurrences) / total_weight
    score = min(math.log(1 + avg_co_save) * SCALE_FACTOR, MAX_BOOST)
    return round(max(0.0, score), 2), [co.program_id for co in co_occurrences]


def compute_cf_boost(
    candidate_id: str,
    saved_program_ids: set[str],
    co_occurrences: list[CoOccurrenceStats],
) -> CFBoost:
    """Pure scorer. No saves, or a candidate already saved, is a zero boost."""
    if not saved_program_ids or candidate_id in saved_program_ids:
        return CFBoost()

    eligible = [
        co for co in co_occurrences
        if co.program_id in saved_program_ids
        and co.co_save_count >= MIN_CO_SAVE_COUNT
        and co.confidence >= MIN_CONFIDENCE
    ]
    eligible.sort(key=lambda co: co.co_save_count, reverse=True)

    boost, related = weighted_score(eligible[:MAX_CO_OCCURRENCES])
    if boost <= 0:
        return CFBoost()
    return CFBoost(boost=boost, related_programs=related, reasons=["CF_BOOST"])


# --- Database access ---

def get_saved_program_ids(db: Session, organization_id: str, now: datetime | None = None) -> set[str]:
    """Distinct programs the organization saved within the learning window."""
    window_start = (now or utcnow()) - timedelta(days=settings.learning_window_days)
    rows = db.execute(
        select(RecommendationEvent.program_id)
        .where(
            RecommendationEvent.organization_id == organization_id,
            RecommendationEvent.event_type == EventType.SAVE.value,
            RecommendationEvent.occurred_at >= window_start,
        )
        .distinct()
    ).scalars().all()
    return set(rows)


def load_co_occurrences(
    db: Session,
    saved_program_ids: set[str],
    candidate_ids: list[str],
) -> dict[str, list[CoOccurrenceStats]]:
    """Co-occurrence rows between saved programs and candidates, grouped by candidate.

    Pairs are stored once in canonical order, so both orientations are queried.
    """
    result: dict[str, list[CoOccurrenceStats]] = {cid: [] for cid in candidate_ids}
    if not saved_program_ids or not candidate_ids:
        return result

    saved = list(saved_program_ids)
    rows = db.execute(
        select(ProgramCoOccurrence)
        .where(
            or_(
                and_(ProgramCoOccurrence.program_a.in_(saved), ProgramCoOccurrence.program_b.in_(candidate_ids)),
                and_(ProgramCoOccurrence.program_a.in_(candidate_ids), ProgramCoOccurrence.program_b.in_(saved)),
            ),
            ProgramCoOccurrence.co_save_count >= MIN_CO_SAVE_COUNT,
            ProgramCoOccurrence.confidence >= MIN_CONFIDENCE,
        )
        .order_by(ProgramCoOccurrence.co_save_count.desc())
    ).scalars().all()

    for row in rows:
        for candidate, other in ((row.program_a, row.program_b), (row.program_b, row.program_a)):
            if candidate in result and other in saved_program_ids and candidate != other:
                result[candidate].append(CoOccurrenceStats(
                    program_id=other,
                    co_save_count=row.co_save_count,
                    co_view_count=row.co_view_count,
                    confidence=row.confidence,
                ))
    return result


def get_item_item_boosts(
    db: Session,
    organization_id: str,
    candidate_ids: list[str],
    now: datetime | None = None,
) -> dict[str, CFBoost]:
    """CF boost for every candidate using one saved-set query and one pair query."""
    saved = get_saved_program_ids(db, organization_id, now)
    if not saved:
        return {cid: CFBoost() for cid in candidate_ids}

    unsaved = [cid for cid in candidate_ids if cid not in saved]
    co_occurrences = load_co_occurrences(db, saved, unsaved)
    return {
        cid: compute_cf_boost(cid, saved, co_occurrences.get(cid, []))
        for cid in candidate_ids
    }


def similar_programs(db: Session, program_id: str, limit: int = 5) -> list[dict]:
    """Programs most often co-saved with `program_id`."""
    rows = db.execute(
        select(ProgramCoOccurrence)
        .where(
            or_(ProgramCoOccurrence.program_a == program_id, ProgramCoOccurrence.program_b == program_id),
            ProgramCoOccurrence.co_save_count >= MIN_CO_SAVE_COUNT,
        )
        .order_by(ProgramCoOccurrence.co_save_count.desc())
        .limit(limit)
    ).scalars().all()

    return [
        {
            "program_id": row.program_b if row.program_a == program_id else row.program_a,
            "co_save_count": row.co_save_count,
            "confidence": row.confidence,
        }
        for row in rows
    ]


# --- Batch co-occurrence builder ---

def wilson_lower_bound(n: int, z: float = WILSON_Z) -> float:
    """Lower bound of the Wilson score interval, with p̂ = min(0.99, n/100)."""
    if n <= 0:
        return 0.0
    phat = min(WILSON_MAX_PHAT, n / 100)
    z2 = z * z
    bound = (phat + z2 / (2 * n) - z * math.sqrt((phat * (1 - phat) + z2 / (4 * n)) / n)) / (1 + z2 / n)
    return max(0.0, bound)


def count_co_saves(saves_by_org: dict[str, set[str]]) -> dict[tuple[str, str], int]:
    """Number of organizations that saved each unordered program pair."""
    counts: dict[tuple[str, str], int] = defaultdict(int)
    for programs in saves_by_org.values():
        for program_x, program_y in combinations(sorted(programs), 2):
            counts[(program_x, program_y)] += 1
    return dict(counts)


def compute_co_occurrences(db: Session, now: datetime | None = None) -> int:
    """Rebuild co-save counts from the learning window. Returns pairs upserted.

    Stored pairs missing from this run are deleted.
    """
    window_start = (now or utcnow()) - timedelta(days=settings.learning_window_days)
    rows = db.execute(
        select(RecommendationEvent.organization_id, RecommendationEvent.program_id)
        .where(
            RecommendationEvent.event_type == EventType.SAVE.value,
            RecommendationEvent.occurred_at >= window_start,
        )
    ).all()

    saves_by_org: dict[str, set[str]] = defaultdict(set)
    for organization_id, program_id in rows:
        saves_by_org[organization_id].add(program_id)

    pairs = {pair: n for pair, n in count_co_saves(saves_by_org).items() if n >= MIN_CO_SAVE_COUNT}
    existing = {
        (row.program_a, row.program_b): row
        for row in db.execute(select(ProgramCoOccurrence)).scalars()
    }

    # Pairs that fell below the threshold in this window stop boosting
    stale = [row for key, row in existing.items() if key not in pairs]
    for row in stale:
        db.delete(row)

    for (program_a, program_b), count in pairs.items():
        row = existing.get((program_a, program_b))
        if not row:
            row = ProgramCoOccurrence(program_a=program_a, program_b=program_b)
            db.add(row)
        row.co_save_count = count
        row.confidence = wilson_lower_bound(count)

    db.flush()
    logger.info(
        "Upserted %d co-occurrence pairs from %d save events, removed %d stale",
        len(pairs), len(rows), len(stale),
    )
    return len(pairs)
