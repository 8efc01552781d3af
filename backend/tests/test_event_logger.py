from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from fundrec.models.enums import EventType
from fundrec.models.recommendation_event import RecommendationEvent
from fundrec.services.event_logger import (
    IMPRESSION_KEY,
    TOTAL_KEY,
    EventLogger,
    SessionRateLimiter,
    validate_event_input,
)


def _count(db) -> int:
    return db.execute(select(func.count(RecommendationEvent.id))).scalar()


def test_empty_batch_is_a_successful_noop(db, event_logger) -> None:
    result = event_logger.log_events(db, [])
    assert result.success and result.logged == 0 and result.skipped == 0


def test_resubmitting_the_same_event_id_is_absorbed(db, event_logger, make_event) -> None:
    event = make_event(event_type=EventType.CLICK)

    first = event_logger.log_events(db, [event])
    db.commit()
    second = event_logger.log_events(db, [event])
    db.commit()

    assert (first.logged, first.skipped) == (1, 0)
    assert (second.logged, second.skipped) == (0, 1)
    assert first.logged + second.logged == 1
    assert first.skipped + second.skipped == 1
    assert _count(db) == 1


def test_duplicate_inside_one_batch_is_skipped(db, event_logger, make_event) -> None:
    event = make_event(event_type=EventType.VIEW)
    result = event_logger.log_events(db, [event, event])
    db.commit()
    assert (result.logged, result.skipped) == (1, 1)
    assert _count(db) == 1


def test_impressions_over_cap_are_dropped_but_click_passes(db, counter_store, make_event) -> None:
    limiter = SessionRateLimiter(counter_store, max_impressions=100, max_events=500)
    logger = EventLogger(limiter)
    counter_store.values[IMPRESSION_KEY.format(session_id="session-1")] = 100
    counter_store.values[TOTAL_KEY.format(session_id="session-1")] = 100

    batch = [make_event(event_type=EventType.IMPRESSION) for _ in range(3)]
    click = make_event(event_type=EventType.CLICK)
    result = logger.log_events(db, batch + [click])
    db.commit()

    assert result.success
    assert (result.logged, result.skipped) == (1, 3)
    stored = db.execute(select(RecommendationEvent.event_type)).scalars().all()
    assert stored == [EventType.CLICK.value]


def test_partial_impression_allowance(db, counter_store, make_event) -> None:
    logger = EventLogger(SessionRateLimiter(counter_store, max_impressions=5))
    counter_store.values[IMPRESSION_KEY.format(session_id="session-1")] = 3

    result = logger.log_events(db, [make_event() for _ in range(4)])

    assert (result.logged, result.skipped) == (2, 2)
    assert counter_store.values[IMPRESSION_KEY.format(session_id="session-1")] == 5
    assert counter_store.values[TOTAL_KEY.format(session_id="session-1")] == 2
    assert counter_store.ttls[TOTAL_KEY.format(session_id="session-1")] == 25 * 60 * 60


def test_total_cap_only_lets_important_events_through(db, counter_store, make_event) -> None:
    logger = EventLogger(SessionRateLimiter(counter_store, max_events=10))
    counter_store.values[TOTAL_KEY.format(session_id="session-1")] = 10

    events = [
        make_event(event_type=EventType.IMPRESSION),
        make_event(event_type=EventType.APPLIED),
        make_event(event_type=EventType.SAVE),
    ]
    result = logger.log_events(db, events)

    assert (result.logged, result.skipped) == (1, 2)


def test_counter_store_failure_fails_open(db, counter_store, make_event) -> None:
    logger = EventLogger(SessionRateLimiter(counter_store, max_impressions=0))
    counter_store.fail = True

    result = logger.log_events(db, [make_event() for _ in range(3)])

    assert result.success
    assert result.logged == 3


def test_sessions_are_limited_independently(db, counter_store, make_event) -> None:
    logger = EventLogger(SessionRateLimiter(counter_store, max_impressions=1))
    events = [
        make_event(session_id="a"),
        make_event(session_id="a"),
        make_event(session_id="b"),
    ]
    result = logger.log_events(db, events)
    assert (result.logged, result.skipped) == (2, 1)


class BrokenSession:
    def __init__(self, bind) -> None:
        self.bind = bind
        self.rolled_back = False

    def get_bind(self):
        return self.bind

    def execute(self, *args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    def rollback(self) -> None:
        self.rolled_back = True


def test_database_failure_is_reported_not_raised(db, event_logger, make_event) -> None:
    broken = BrokenSession(db.get_bind())
    result = event_logger.log_events(broken, [make_event(), make_event()])

    assert not result.success
    assert (result.logged, result.skipped) == (0, 2)
    assert result.error
    assert broken.rolled_back


def test_session_event_count(counter_store, event_logger) -> None:
    counter_store.values[IMPRESSION_KEY.format(session_id="s")] = 4
    counter_store.values[TOTAL_KEY.format(session_id="s")] = 9
    assert event_logger.get_session_event_count("s") == {"impressions": 4, "total": 9}

    counter_store.fail = True
    assert event_logger.get_session_event_count("s") == {"impressions": 0, "total": 0}


def test_validate_event_input_reports_every_problem() -> None:
    valid, errors = validate_event_input({
        "event_id": "e1",
        "organization_id": "o",
        "program_id": "p",
        "session_id": "s",
        "event_type": "TELEPORT",
        "position": 2000,
        "list_size": 10,
        "match_score": 50,
        "visibility_ratio": 1.5,
        "occurred_at": "not-a-date",
    })
    assert not valid
    assert any("event_type" in e for e in errors)
    assert any("position" in e for e in errors)
    assert any("visibility_ratio" in e for e in errors)
    assert any("occurred_at" in e for e in errors)


def test_validate_event_input_accepts_good_event() -> None:
    valid, errors = validate_event_input({
        "event_id": "e1",
        "organization_id": "o",
        "program_id": "p",
        "session_id": "s",
        "event_type": "SAVE",
        "position": 0,
        "list_size": 10,
        "match_score": 80.5,
        "occurred_at": "2026-03-01T10:00:00Z",
    })
    assert valid, errors
