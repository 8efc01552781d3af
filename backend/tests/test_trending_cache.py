from __future__ import annotations

import threading
import time
from datetime import timedelta

from fundrec.models.enums import EventType
from fundrec.services.clock import utcnow
from fundrec.services.trending_cache import (
    TrendingCache,
    database_trending_loader,
    load_trending_counts,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class SequenceLoader:
    """Returns the queued results in order; exceptions are raised."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_first_read_loads_synchronously() -> None:
    loader = SequenceLoader({"p1": 12})
    cache = TrendingCache(loader, ttl_seconds=60, clock=FakeClock())

    assert not cache.has_snapshot
    assert cache.get("p1") == 12
    assert cache.get("unknown") == 0
    assert loader.calls == 1


def test_fresh_snapshot_is_not_reloaded() -> None:
    clock = FakeClock()
    loader = SequenceLoader({"p1": 12}, {"p1": 99})
    cache = TrendingCache(loader, ttl_seconds=60, clock=clock, background=False)

    cache.get_counts()
    clock.now = 59
    assert cache.get("p1") == 12
    assert loader.calls == 1

    clock.now = 61
    assert cache.is_stale
    assert cache.get("p1") == 99


def test_failed_refresh_keeps_last_snapshot() -> None:
    clock = FakeClock()
    loader = SequenceLoader({"p1": 12}, RuntimeError("db down"), {"p1": 30})
    cache = TrendingCache(loader, ttl_seconds=60, clock=clock, background=False)

    cache.get_counts()
    clock.now = 120
    assert cache.get("p1") == 12
    assert cache.last_error == "db down"

    # No retry until the backoff has passed
    clock.now = 150
    assert cache.get("p1") == 12
    assert loader.calls == 2

    clock.now = 181
    assert cache.get("p1") == 30
    assert cache.last_error is None
    assert loader.calls == 3


def test_invalidate_forces_reload() -> None:
    loader = SequenceLoader({"p1": 1}, {"p1": 2})
    cache = TrendingCache(loader, ttl_seconds=600, clock=FakeClock(), background=False)

    cache.get_counts()
    cache.invalidate()
    assert cache.get("p1") == 2


def test_stale_read_serves_old_snapshot_while_refreshing() -> None:
    clock = FakeClock()
    release = threading.Event()
    calls = []

    def loader():
        calls.append(1)
        if len(calls) == 1:
            return {"p1": 1}
        release.wait(5)
        return {"p1": 2}

    cache = TrendingCache(loader, ttl_seconds=60, clock=clock, background=True)
    cache.get_counts()
    clock.now = 100

    assert cache.get("p1") == 1
    release.set()

    deadline = time.monotonic() + 5
    while cache.get("p1") != 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert cache.get("p1") == 2
    assert len(calls) == 2


def test_load_trending_counts(db, add_events) -> None:
    recent = utcnow() - timedelta(days=1)
    add_events("org-1", "p1", EventType.VIEW.value, count=3, occurred_at=recent)
    add_events("org-2", "p1", EventType.CLICK.value, count=2, occurred_at=recent)
    add_events("org-1", "p1", EventType.SAVE.value, occurred_at=recent)
    add_events("org-1", "p2", EventType.VIEW.value, occurred_at=utcnow() - timedelta(days=30))

    assert load_trending_counts(db) == {"p1": 5}


def test_database_loader_opens_its_own_session(session_factory, add_events) -> None:
    add_events("org-1", "p1", EventType.VIEW.value, occurred_at=utcnow())
    cache = TrendingCache(database_trending_loader(session_factory), background=False)
    assert cache.get("p1") == 1


def test_failed_refresh_backs_off_for_at_most_the_ttl() -> None:
    clock = FakeClock()
    loader = SequenceLoader({"p1": 1}, RuntimeError("db down"), {"p1": 2})
    cache = TrendingCache(loader, ttl_seconds=10, clock=clock, background=False)

    cache.get_counts()
    clock.now = 20
    cache.get_counts()
    assert not cache.is_stale

    clock.now = 30
    assert cache.is_stale
    assert cache.get("p1") == 2
