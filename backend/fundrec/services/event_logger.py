"""Event logger — idempotent recommendation event ingestion with session rate limiting.

Redis holds per-session counters (O(1), no DB reads). The insert relies on the
unique `event_id` constraint with ON CONFLICT DO NOTHING, so concurrent retries
of the same client batch cannot double-insert. Logging never raises into the
caller's request: Redis trouble fails open, database trouble is reported in the
result.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Iterable

import redis
from sqlalchemy import insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fundrec.config import get_settings
from fundrec.models.enums import EventType
from fundrec.models.recommendation_event import RecommendationEvent
from fundrec.schemas.events import InteractionEventIn, LogEventsResult
from fundrec.services.clock import ensure_utc

logger = logging.getLogger(__name__)
settings = get_settings()

# Never rate limited
IMPORTANT_TYPES = frozenset({
    EventType.CLICK,
    EventType.SAVE,
    EventType.UNSAVE,
    EventType.DISMISS,
    EventType.HIDE,
    EventType.VIEW,
})

IMPRESSION_KEY = "rec_impressions:session:{session_id}"
TOTAL_KEY = "rec_events:session:{session_id}"

# Failures that mean "counter store unavailable", as opposed to bugs
COUNTER_STORE_ERRORS = (redis.RedisError, OSError)


@lru_cache
def get_counter_store() -> redis.Redis:
    """Shared Redis client for session counters."""
    return redis.from_url(
        settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        decode_responses=True,
    )


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class SessionRateLimiter:
    """Caps impressions and total events per session using Redis counters."""

    def __init__(
        self,
        store: redis.Redis,
        max_impressions: int | None = None,
        max_events: int | None = None,
        ttl_seconds: int | None = None,
    ):
        self.store = store
        self.max_impressions = max_impressions if max_impressions is not None else settings.max_impressions_per_session
        self.max_events = max_events if max_events is not None else settings.max_events_per_session
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds

    def session_counts(self, session_id: str) -> tuple[int, int]:
        """Return (impressions, total) counted so far for a session."""
        impressions = _as_int(self.store.get(IMPRESSION_KEY.format(session_id=session_id)))
        total = _as_int(self.store.get(TOTAL_KEY.format(session_id=session_id)))
        return impressions, total

    def filter(self, events: list[InteractionEventIn], session_id: str) -> list[InteractionEventIn]:
        """Return the events allowed through, updating counters for them.

        Raises the store's error on failure; the caller decides to fail open.
        """
        impression_count, total_count = self.session_counts(session_id)

        if total_count >= self.max_events:
            logger.warning("Session %s hit total event limit (%d)", session_id[:8], total_count)
            return [e for e in events if e.event_type in IMPORTANT_TYPES]

        important: list[InteractionEventIn] = []
        impressions: list[InteractionEventIn] = []
        others: list[InteractionEventIn] = []
        for event in events:
            if event.event_type in IMPORTANT_TYPES:
                important.append(event)
            elif event.event_type == EventType.IMPRESSION:
                impressions.append(event)
            else:
                others.append(event)

        remaining_impressions = max(0, self.max_impressions - impression_count)
        allowed_impressions = impressions[:remaining_impressions]
        if len(allowed_impressions) < len(impressions):
            logger.info(
                "Session %s impression cap reached, dropping %d impressions",
                session_id[:8], len(impressions) - len(allowed_impressions),
            )

        impression_key = IMPRESSION_KEY.format(session_id=session_id)
        total_key = TOTAL_KEY.format(session_id=session_id)
        total_allowed = len(important) + len(allowed_impressions) + len(others)

        pipe = self.store.pipeline(transaction=True)
        if allowed_impressions:
            pipe.incrby(impression_key, len(allowed_impressions))
            pipe.expire(impression_key, self.ttl_seconds)
        if total_allowed:
            pipe.incrby(total_key, total_allowed)
            pipe.expire(total_key, self.ttl_seconds)
        pipe.execute()

        allowed = {id(e) for e in important + allowed_impressions + others}
        # Keep the client's batch order
        return [e for e in events if id(e) in allowed]


def _insert_statement(dialect_name: str):
    if dialect_name == "postgresql":
        return postgresql.insert(RecommendationEvent)
    if dialect_name == "sqlite":
        return sqlite.insert(RecommendationEvent)
    raise NotImplementedError(f"Idempotent insert not supported for dialect {dialect_name!r}")


def _event_row(event: InteractionEventIn) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "schema_version": 1,
        "event_id": event.event_id,
        "organization_id": event.organization_id,
        "program_id": event.program_id,
        "user_id": event.user_id,
        "session_id": event.session_id,
        "event_type": event.event_type.value,
        "position": event.position,
        "list_size": event.list_size,
        "match_score": event.match_score,
        "dwell_time_ms": event.dwell_time_ms,
        "visibility_ratio": event.visibility_ratio,
        "scroll_depth": event.scroll_depth,
        "source": event.source,
        "device_type": event.device_type,
        "client_tz_offset_min": event.client_tz_offset_min,
        "batch_id": event.batch_id,
        "occurred_at": ensure_utc(event.occurred_at),
    }


class EventLogger:
    """Append-only event log. One instance per process; stateless per call."""

    def __init__(self, rate_limiter: SessionRateLimiter | None):
        self.rate_limiter = rate_limiter

    def _apply_rate_limit(self, events: list[InteractionEventIn]) -> list[InteractionEventIn]:
        if self.rate_limiter is None:
            return events

        allowed: list[InteractionEventIn] = []
        for session_id, session_events in _group_by_session(events):
            try:
                allowed.extend(self.rate_limiter.filter(session_events, session_id))
            except COUNTER_STORE_ERRORS as e:
                logger.warning("Rate limit check failed for session %s, allowing all events: %s", session_id[:8], e)
                allowed.extend(session_events)
        return allowed

    def log_events(self, db: Session, events: list[InteractionEventIn]) -> LogEventsResult:
        """
        Persist a batch of events.

        Returns counts of logged and skipped events. Duplicates (same event_id)
        and rate-limited events are reported as skipped, not failed.
        """
        if not events:
            return LogEventsResult(success=True, logged=0, skipped=0)

        filtered = self._apply_rate_limit(events)
        if not filtered:
            return LogEventsResult(success=True, logged=0, skipped=len(events))

        try:
            stmt = (
                _insert_statement(db.get_bind().dialect.name)
                .values([_event_row(e) for e in filtered])
                .on_conflict_do_nothing(index_elements=["event_id"])
                .returning(RecommendationEvent.event_id)
            )
            logged = len(db.execute(stmt).all())
            db.flush()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to log %d events: %s", len(events), e)
            return LogEventsResult(success=False, logged=0, skipped=len(events), error=str(e))

        skipped = len(events) - logged
        logger.info("Logged %d events, skipped %d (session: %s)", logged, skipped, events[0].session_id[:8])
        return LogEventsResult(success=True, logged=logged, skipped=skipped)

    def get_session_event_count(self, session_id: str) -> dict[str, int]:
        """Current counters for a session; zeros when the store is unavailable."""
        if self.rate_limiter is None:
            return {"impressions": 0, "total": 0}
        try:
            impressions, total = self.rate_limiter.session_counts(session_id)
        except COUNTER_STORE_ERRORS as e:
            logger.error("Failed to get session counts for %s: %s", session_id[:8], e)
            return {"impressions": 0, "total": 0}
        return {"impressions": impressions, "total": total}


def _group_by_session(events: Iterable[InteractionEventIn]) -> list[tuple[str, list[InteractionEventIn]]]:
    groups: dict[str, list[InteractionEventIn]] = {}
    for event in events:
        groups.setdefault(event.session_id, []).append(event)
    return list(groups.items())


_REQUIRED_FIELDS = ("event_id", "organization_id", "program_id", "session_id", "event_type", "occurred_at")
_RANGES = {
    "position": (0, 1000),
    "list_size": (0, 1000),
    "match_score": (0, 100),
    "visibility_ratio": (0, 1),
    "scroll_depth": (0, 1),
}


def validate_event_input(event: dict[str, Any]) -> tuple[bool, list[str]]:
    """Lightweight validation for raw event dicts, reporting every problem found."""
    errors: list[str] = []

    for name in _REQUIRED_FIELDS:
        if not event.get(name):
            errors.append(f"{name} is required")

    for name in ("position", "list_size", "match_score"):
        value = event.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{name} must be a number")

    event_type = event.get("event_type")
    valid_types = [t.value for t in EventType]
    if event_type and event_type not in valid_types:
        errors.append(f"event_type must be one of: {', '.join(valid_types)}")

    for name, (low, high) in _RANGES.items():
        value = event.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and not low <= value <= high:
            errors.append(f"{name} must be between {low} and {high}")

    occurred_at = event.get("occurred_at")
    if isinstance(occurred_at, str):
        try:
            datetime.fromisoformat(occurred_at.replace("Z", "+00:00"))
        except ValueError:
            errors.append("occurred_at must be an ISO 8601 timestamp")

    return len(errors) == 0, errors
