"""Preference aggregator — derives organization affinities from recommendation events.

Runs over a rolling learning window (default 30 days). Each event contributes

    weight = exp(-λ · days_since_event) · |EVENT_WEIGHTS[type]| · position_factor

signed by its event weight. Per-dimension scores are sigmoid(3 · Σsigned / Σweight),
so 0.5 is neutral and the output always lies in (0, 1).

The cold-start tier is derived from raw view counts and category diversity in the
same window. Both are written as a full-replace upsert keyed by organization.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fundrec.config import get_settings
from fundrec.models.enums import ColdStartTier, EventType
from fundrec.models.funding_program import FundingProgram
from fundrec.models.organization_preference import (
    OrganizationPersonalizationStatus,
    OrganizationPreference,
)
from fundrec.models.recommendation_event import RecommendationEvent
from fundrec.services.clock import days_between, ensure_utc, utcnow
from fundrec.services.keyword_normalizer import normalize_keyword
from fundrec.services.position_bias import Engagement, adjusted_rate, position_bias_factor

logger = logging.getLogger(__name__)
settings = get_settings()

# Event weights for preference calculation (sign = direction of the signal)
EVENT_WEIGHTS: dict[EventType, float] = {
    EventType.IMPRESSION: 0.1,
    EventType.VIEW: 0.3,
    EventType.CLICK: 0.5,
    EventType.SAVE: 1.0,
    EventType.UNSAVE: -0.5,
    EventType.DISMISS: -0.3,
    EventType.HIDE: -1.0,
    EventType.APPLIED: 2.0,
    EventType.PLANNING: 0.8,
    EventType.NOT_ELIGIBLE: -0.2,
}

SIGMOID_STEEPNESS = 3.0
MAX_KEYWORDS = 50

# Outcome reports only count once they are this old
OUTCOME_TYPES = frozenset({EventType.APPLIED, EventType.PLANNING, EventType.NOT_ELIGIBLE})
OUTCOME_REFLECTION_DELAY_DAYS = 7

# Cold start thresholds
FULL_COLD_MAX_VIEWS = 5
PARTIAL_COLD_MAX_VIEWS = 20
WARM_MIN_CATEGORIES = 3

DIVERSITY_EVENT_TYPES = frozenset({EventType.VIEW, EventType.CLICK, EventType.SAVE})


@dataclass
class EventWithProgram:
    """An event joined with the program attributes the aggregator needs."""

    event_type: EventType
    position: int
    list_size: int
    occurred_at: datetime
    program_id: str
    category: str | None = None
    keywords: list[str] = field(default_factory=list)
    ministry: str | None = None


@dataclass
class AggregatedPreferences:
    category_scores: dict[str, float] = field(default_factory=dict)
    keyword_scores: dict[str, float] = field(default_factory=dict)
    ministry_scores: dict[str, float] = field(default_factory=dict)
    total_impressions: int = 0
    total_views: int = 0
    total_clicks: int = 0
    total_saves: int = 0
    total_dismisses: int = 0
    adjusted_ctr: float | None = None
    adjusted_save_rate: float | None = None


@dataclass
class _Accumulator:
    weighted_sum: float = 0.0
    total_weight: float = 0.0

    def add(self, signed_weight: float, weight: float) -> None:
        self.weighted_sum += signed_weight
        self.total_weight += weight

    def score(self) -> float | None:
        if self.total_weight <= 0:
            return None
        return _sigmoid(self.weighted_sum / self.total_weight)


def _sigmoid(raw: float) -> float:
    return 1.0 / (1.0 + math.exp(-raw * SIGMOID_STEEPNESS))


def signal_position_factor(position: int, list_size: int, positive: bool) -> float:
    """Position correction for one event.

    Engagement low in the list is stronger evidence than engagement at the top,
    so positive signals take the full (steep) bias curve. Negative signals are
    discounted less aggressively: a dismissal is meaningful wherever it happens.
    """
    factor = position_bias_factor(position, list_size)
    return factor if positive else math.sqrt(factor)


def event_weight(event: EventWithProgram, now: datetime, decay: float | None = None) -> tuple[float, float]:
    """Return (signed_weight, weight) for one event."""
    decay = settings.recency_decay_factor if decay is None else decay
    days_since = max(0.0, days_between(event.occurred_at, now))
    recency = math.exp(-decay * days_since)

    type_weight = EVENT_WEIGHTS.get(event.event_type, 0.0)
    positive = type_weight >= 0
    weight = recency * abs(type_weight) * signal_position_factor(event.position, event.list_size, positive)
    return (weight if positive else -weight), weight


def _is_reflectable(event: EventWithProgram, now: datetime) -> bool:
    if event.event_type not in OUTCOME_TYPES:
        return True
    return days_between(event.occurred_at, now) >= OUTCOME_REFLECTION_DELAY_DAYS


def compute_category_scores(events: list[EventWithProgram], now: datetime) -> dict[str, float]:
    acc: dict[str, _Accumulator] = defaultdict(_Accumulator)
    for event in events:
        if not event.category:
            continue
        signed, weight = event_weight(event, now)
        acc[event.category].add(signed, weight)
    return {key: score for key, a in acc.items() if (score := a.score()) is not None}


def compute_ministry_scores(events: list[EventWithProgram], now: datetime) -> dict[str, float]:
    acc: dict[str, _Accumulator] = defaultdict(_Accumulator)
    for event in events:
        if not event.ministry:
            continue
        signed, weight = event_weight(event, now)
        acc[event.ministry].add(signed, weight)
    return {key: score for key, a in acc.items() if (score := a.score()) is not None}


def compute_keyword_scores(events: list[EventWithProgram], now: datetime) -> dict[str, float]:
    """Keyword affinities; an event's weight is split across its program's keywords.

    Only the MAX_KEYWORDS keys furthest from neutral are kept.
    """
    acc: dict[str, _Accumulator] = defaultdict(_Accumulator)
    for event in events:
        if not event.keywords:
            continue
        signed, weight = event_weight(event, now)
        share = len(event.keywords)
        for keyword in event.keywords:
            key = normalize_keyword(keyword)
            if key:
                acc[key].add(signed / share, weight / share)

    scored = [(key, a.score()) for key, a in acc.items()]
    scored = [(key, score) for key, score in scored if score is not None]
    scored.sort(key=lambda item: abs(item[1] - 0.5), reverse=True)
    return dict(scored[:MAX_KEYWORDS])


def compute_event_counts(events: list[EventWithProgram]) -> dict[str, int]:
    counts = {
        "total_impressions": 0,
        "total_views": 0,
        "total_clicks": 0,
        "total_saves": 0,
        "total_dismisses": 0,
    }
    for event in events:
        if event.event_type == EventType.IMPRESSION:
            counts["total_impressions"] += 1
        elif event.event_type == EventType.VIEW:
            counts["total_views"] += 1
        elif event.event_type == EventType.CLICK:
            counts["total_clicks"] += 1
        elif event.event_type == EventType.SAVE:
            counts["total_saves"] += 1
        elif event.event_type in (EventType.DISMISS, EventType.HIDE):
            counts["total_dismisses"] += 1
    return counts


def _category_rate(
    events: list[EventWithProgram],
    denominator_types: set[EventType],
    engaged_type: EventType,
) -> float | None:
    exposures = [e for e in events if e.event_type in denominator_types]
    if not exposures:
        return None

    engaged_categories = {e.category for e in events if e.event_type == engaged_type}
    return adjusted_rate(
        Engagement(e.position, e.list_size, e.category in engaged_categories)
        for e in exposures
    )


def compute_adjusted_ctr(events: list[EventWithProgram]) -> float | None:
    return _category_rate(events, {EventType.IMPRESSION}, EventType.CLICK)


def compute_adjusted_save_rate(events: list[EventWithProgram]) -> float | None:
    return _category_rate(events, {EventType.VIEW, EventType.CLICK}, EventType.SAVE)


def compute_preferences(events: list[EventWithProgram], now: datetime | None = None) -> AggregatedPreferences:
    """Pure aggregation over already-windowed events."""
    now = now or utcnow()
    events = [e for e in events if _is_reflectable(e, now)]
    if not events:
        return AggregatedPreferences()

    return AggregatedPreferences(
        category_scores=compute_category_scores(events, now),
        keyword_scores=compute_keyword_scores(events, now),
        ministry_scores=compute_ministry_scores(events, now),
        adjusted_ctr=compute_adjusted_ctr(events),
        adjusted_save_rate=compute_adjusted_save_rate(events),
        **compute_event_counts(events),
    )


def classify_cold_start(view_count: int, unique_categories: int) -> ColdStartTier:
    if view_count < FULL_COLD_MAX_VIEWS:
        return ColdStartTier.FULL_COLD
    if view_count < PARTIAL_COLD_MAX_VIEWS or unique_categories < WARM_MIN_CATEGORIES:
        return ColdStartTier.PARTIAL_COLD
    return ColdStartTier.WARM


def cold_start_inputs(events: list[EventWithProgram]) -> tuple[int, int]:
    """(view count, distinct categories across viewed/clicked/saved programs)."""
    view_count = sum(1 for e in events if e.event_type == EventType.VIEW)
    categories = {e.category for e in events if e.event_type in DIVERSITY_EVENT_TYPES and e.category}
    return view_count, len(categories)


# --- Database access ---

def _window_start(now: datetime) -> datetime:
    return now - timedelta(days=settings.learning_window_days)


def load_events_with_programs(db: Session, organization_id: str, now: datetime) -> list[EventWithProgram]:
    """Fetch an organization's windowed events joined with program attributes."""
    rows = db.execute(
        select(
            RecommendationEvent.event_type,
            RecommendationEvent.position,
            RecommendationEvent.list_size,
            RecommendationEvent.occurred_at,
            RecommendationEvent.program_id,
            FundingProgram.category,
            FundingProgram.keywords,
            FundingProgram.ministry,
        )
        .outerjoin(FundingProgram, FundingProgram.id == RecommendationEvent.program_id)
        .where(
            RecommendationEvent.organization_id == organization_id,
            RecommendationEvent.occurred_at >= _window_start(now),
        )
        .order_by(RecommendationEvent.occurred_at.desc())
    ).all()

    events = []
    for row in rows:
        try:
            event_type = EventType(row.event_type)
        except ValueError:
            logger.warning("Skipping event with unknown type %r for org %s", row.event_type, organization_id)
            continue
        events.append(EventWithProgram(
            event_type=event_type,
            position=row.position,
            list_size=row.list_size,
            occurred_at=ensure_utc(row.occurred_at),
            program_id=row.program_id,
            category=row.category,
            keywords=list(row.keywords or []),
            ministry=row.ministry,
        ))
    return events


def aggregate_preferences_for_organization(
    db: Session,
    organization_id: str,
    now: datetime | None = None,
) -> AggregatedPreferences:
    now = now or utcnow()
    return compute_preferences(load_events_with_programs(db, organization_id, now), now)


def save_preferences(
    db: Session,
    organization_id: str,
    preferences: AggregatedPreferences,
    now: datetime | None = None,
) -> OrganizationPreference:
    """Full-replace upsert of the preference snapshot."""
    row = db.execute(
        select(OrganizationPreference).where(OrganizationPreference.organization_id == organization_id)
    ).scalar_one_or_none()

    if not row:
        row = OrganizationPreference(organization_id=organization_id)
        db.add(row)

    row.category_scores = {k: round(v, 4) for k, v in preferences.category_scores.items()}
    row.keyword_scores = {k: round(v, 4) for k, v in preferences.keyword_scores.items()}
    row.ministry_scores = {k: round(v, 4) for k, v in preferences.ministry_scores.items()}
    row.total_impressions = preferences.total_impressions
    row.total_views = preferences.total_views
    row.total_clicks = preferences.total_clicks
    row.total_saves = preferences.total_saves
    row.total_dismisses = preferences.total_dismisses
    row.adjusted_ctr = preferences.adjusted_ctr
    row.adjusted_save_rate = preferences.adjusted_save_rate
    row.last_computed_at = now or utcnow()
    db.flush()
    return row


def update_cold_start_status(
    db: Session,
    organization_id: str,
    now: datetime | None = None,
    events: list[EventWithProgram] | None = None,
) -> ColdStartTier:
    """Recompute and persist the organization's cold-start tier."""
    now = now or utcnow()
    if events is None:
        events = load_events_with_programs(db, organization_id, now)

    view_count, unique_categories = cold_start_inputs(events)
    tier = classify_cold_start(view_count, unique_categories)

    first_at, last_at = db.execute(
        select(func.min(RecommendationEvent.occurred_at), func.max(RecommendationEvent.occurred_at))
        .where(RecommendationEvent.organization_id == organization_id)
    ).one()

    status = db.execute(
        select(OrganizationPersonalizationStatus)
        .where(OrganizationPersonalizationStatus.organization_id == organization_id)
    ).scalar_one_or_none()

    if not status:
        status = OrganizationPersonalizationStatus(organization_id=organization_id, first_event_at=first_at)
        db.add(status)

    status.status = tier.value
    status.total_views = view_count
    status.unique_categories = unique_categories
    status.last_event_at = last_at
    db.flush()
    return tier


def refresh_organization(db: Session, organization_id: str, now: datetime | None = None) -> ColdStartTier:
    """Recompute snapshot and tier from one event load."""
    now = now or utcnow()
    events = load_events_with_programs(db, organization_id, now)
    save_preferences(db, organization_id, compute_preferences(events, now), now)
    return update_cold_start_status(db, organization_id, now, events=events)


def get_organization_preferences(db: Session, organization_id: str) -> AggregatedPreferences | None:
    row = db.execute(
        select(OrganizationPreference).where(OrganizationPreference.organization_id == organization_id)
    ).scalar_one_or_none()
    if not row:
        return None

    return AggregatedPreferences(
        category_scores=dict(row.category_scores or {}),
        keyword_scores=dict(row.keyword_scores or {}),
        ministry_scores=dict(row.ministry_scores or {}),
        total_impressions=row.total_impressions,
        total_views=row.total_views,
        total_clicks=row.total_clicks,
        total_saves=row.total_saves,
        total_dismisses=row.total_dismisses,
        adjusted_ctr=row.adjusted_ctr,
        adjusted_save_rate=row.adjusted_save_rate,
    )


def get_cold_start_status(db: Session, organization_id: str) -> ColdStartTier:
    status = db.execute(
        select(OrganizationPersonalizationStatus.status)
        .where(OrganizationPersonalizationStatus.organization_id == organization_id)
    ).scalar_one_or_none()
    return ColdStartTier(status) if status else ColdStartTier.FULL_COLD
