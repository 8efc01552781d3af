from __future__ import annotations

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import redis


def pytest_configure() -> None:
    # Point the engine at a throwaway SQLite file before fundrec is imported.
    db_dir = tempfile.mkdtemp(prefix="fundrec-tests-")
    os.environ["FUNDREC_DATABASE_URL"] = f"sqlite:///{db_dir}/fundrec.db"
    os.environ["FUNDREC_REDIS_URL"] = "redis://localhost:6399/15"
    os.environ["FUNDREC_REDIS_SOCKET_TIMEOUT"] = "0.1"


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakePipeline:
    def __init__(self, store: "FakeCounterStore") -> None:
        self.store = store
        self.ops: list[tuple[str, str, int]] = []

    def incrby(self, key: str, amount: int) -> "FakePipeline":
        self.ops.append(("incrby", key, amount))
        return self

    def expire(self, key: str, seconds: int) -> "FakePipeline":
        self.ops.append(("expire", key, seconds))
        return self

    def execute(self) -> list[Any]:
        self.store.check()
        results: list[Any] = []
        for op, key, arg in self.ops:
            if op == "incrby":
                self.store.values[key] = self.store.values.get(key, 0) + arg
                results.append(self.store.values[key])
            else:
                self.store.ttls[key] = arg
                results.append(True)
        self.ops = []
        return results


class FakeCounterStore:
    """In-memory stand-in for the Redis counter store (get/incrby/expire)."""

    def __init__(self) -> None:
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("counter store unavailable")

    def get(self, key: str) -> str | None:
        self.check()
        value = self.values.get(key)
        return None if value is None else str(value)

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        self.check()
        return FakePipeline(self)


@pytest.fixture()
def clean_db() -> None:
    from fundrec.models import Base
    from fundrec.models.base import engine

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture()
def session_factory(clean_db: None) -> Any:
    from fundrec.models.base import SessionLocal

    return SessionLocal


@pytest.fixture()
def db(session_factory: Any) -> Any:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def counter_store() -> FakeCounterStore:
    return FakeCounterStore()


@pytest.fixture()
def event_logger(counter_store: FakeCounterStore) -> Any:
    from fundrec.services.event_logger import EventLogger, SessionRateLimiter

    return EventLogger(SessionRateLimiter(counter_store))


@pytest.fixture()
def make_program(db: Any) -> Any:
    from fundrec.models.funding_program import FundingProgram

    def _make(**kwargs: Any) -> FundingProgram:
        fields = {
            "id": str(uuid.uuid4()),
            "title": "Program",
            "category": "ICT",
            "keywords": ["AI"],
            "ministry": "MSIT",
            "deadline": None,
            "status": "ACTIVE",
            "created_at": NOW - timedelta(days=60),
        }
        fields.update(kwargs)
        program = FundingProgram(**fields)
        db.add(program)
        db.commit()
        return program

    return _make


@pytest.fixture()
def make_event() -> Any:
    from fundrec.models.enums import EventType
    from fundrec.schemas.events import InteractionEventIn

    def _make(**kwargs: Any) -> InteractionEventIn:
        fields: dict[str, Any] = {
            "event_id": str(uuid.uuid4()),
            "organization_id": "org-1",
            "program_id": "prog-1",
            "session_id": "session-1",
            "event_type": EventType.IMPRESSION,
            "position": 0,
            "list_size": 10,
            "match_score": 70.0,
            "occurred_at": NOW,
        }
        fields.update(kwargs)
        return InteractionEventIn(**fields)

    return _make


@pytest.fixture()
def add_events(db: Any) -> Any:
    """Insert raw events directly, bypassing the logger."""
    from fundrec.models.recommendation_event import RecommendationEvent

    def _add(organization_id: str, program_id: str, event_type: str, count: int = 1,
             occurred_at: datetime = NOW, position: int = 0, list_size: int = 10) -> None:
        for _ in range(count):
            db.add(RecommendationEvent(
                event_id=str(uuid.uuid4()),
                organization_id=organization_id,
                program_id=program_id,
                session_id="seed",
                event_type=event_type,
                position=position,
                list_size=list_size,
                match_score=60.0,
                occurred_at=occurred_at,
            ))
        db.commit()

    return _add


@pytest.fixture()
def client(clean_db: None, counter_store: FakeCounterStore) -> Any:
    from fastapi.testclient import TestClient

    from fundrec.dependencies.services import (
        get_event_logger,
        get_metrics,
        get_personalization_service,
    )
    from fundrec.main import app
    from fundrec.services.event_logger import EventLogger, SessionRateLimiter
    from fundrec.services.metrics_collector import MetricsAccumulator
    from fundrec.services.personalization_layer import PersonalizationService
    from fundrec.services.trending_cache import TrendingCache

    metrics = MetricsAccumulator()
    service = PersonalizationService(
        trending_cache=TrendingCache(lambda: {}, background=False),
        metrics=metrics,
    )
    logger = EventLogger(SessionRateLimiter(counter_store))

    app.dependency_overrides[get_event_logger] = lambda: logger
    app.dependency_overrides[get_personalization_service] = lambda: service
    app.dependency_overrides[get_metrics] = lambda: metrics
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
