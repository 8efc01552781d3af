"""Trending cache — per-program VIEW/CLICK counts over the past week.

An explicit object with its own TTL and refresh function, injected into the
contextual scorer. Reads never block on a refresh once a snapshot exists:
a stale snapshot is served while a background thread reloads it, and a failed
reload keeps the last good snapshot until a short retry delay has passed.
"""

import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from fundrec.config import get_settings
from fundrec.models.enums import EventType
from fundrec.models.recommendation_event import RecommendationEvent
from fundrec.services.clock import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()

TrendingLoader = Callable[[], Mapping[str, int]]

TRENDING_EVENT_TYPES = (EventType.VIEW.value, EventType.CLICK.value)

# Wait before retrying a failed reload, capped by the TTL
REFRESH_RETRY_SECONDS = 60.0


class TrendingCache:
    def __init__(
        self,
        loader: TrendingLoader,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        background: bool = True,
    ):
        self.loader = loader
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.trending_cache_ttl_seconds
        self.clock = clock
        self.background = background

        self._counts: dict[str, int] = {}
        self._expires_at: float | None = None
        self._loaded = False
        self._refreshing = False
        self._lock = threading.Lock()
        self.last_error: str | None = None

    @property
    def is_stale(self) -> bool:
        return self._expires_at is None or self.clock() >= self._expires_at

    @property
    def has_snapshot(self) -> bool:
        return self._loaded

    def refresh(self) -> bool:
        """Reload synchronously. Returns False (keeping the old snapshot) on failure."""
        try:
            counts = dict(self.loader())
        except Exception as e:
            # Any loader failure leaves the last good snapshot in place
            logger.warning("Trending cache refresh failed, keeping last snapshot: %s", e)
            self.last_error = str(e)
            with self._lock:
                self._expires_at = self.clock() + min(self.ttl_seconds, REFRESH_RETRY_SECONDS)
                self._refreshing = False
            return False

        with self._lock:
            self._counts = counts
            self._expires_at = self.clock() + self.ttl_seconds
            self._loaded = True
            self._refreshing = False
        self.last_error = None
        logger.debug("Trending cache refreshed with %d programs", len(counts))
        return True

    def invalidate(self) -> None:
        with self._lock:
            self._expires_at = None

    def _start_refresh(self) -> bool:
        with self._lock:
            if self._refreshing:
                return False
            self._refreshing = True
            return True

    def get_counts(self) -> dict[str, int]:
        """Current snapshot, refreshing first if stale.

        The very first load is synchronous so callers never see an empty cache
        just because the process started recently.
        """
        if self.is_stale and self._start_refresh():
            if self.background and self._loaded:
                threading.Thread(target=self.refresh, name="trending-cache-refresh", daemon=True).start()
            else:
                self.refresh()
        with self._lock:
            return self._counts

    def get(self, program_id: str) -> int:
        return self.get_counts().get(program_id, 0)


def load_trending_counts(db: Session, window_days: int | None = None) -> dict[str, int]:
    """VIEW + CLICK count per program over the trending window."""
    window_days = window_days if window_days is not None else settings.trending_window_days
    since = utcnow() - timedelta(days=window_days)
    rows = db.execute(
        select(RecommendationEvent.program_id, func.count(RecommendationEvent.id))
        .where(
            RecommendationEvent.event_type.in_(TRENDING_EVENT_TYPES),
            RecommendationEvent.occurred_at >= since,
        )
        .group_by(RecommendationEvent.program_id)
    ).all()
    return {program_id: count for program_id, count in rows}


def database_trending_loader(session_factory: sessionmaker) -> TrendingLoader:
    """Loader that opens its own session, safe to run on the refresh thread."""

    def _load() -> dict[str, int]:
        with session_factory() as session:
            return load_trending_counts(session)

    return _load
