from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import NOW
from fundrec.models.enums import ColdStartTier, EventType
from fundrec.models.personalization_metric import PersonalizationMetric
from fundrec.models.program_co_occurrence import ProgramCoOccurrence
from fundrec.models.recommendation_event import RecommendationEvent
from fundrec.services.preference_aggregator import get_cold_start_status, get_organization_preferences
from fundrec.tasks import personalization_tasks
from fundrec.tasks.celery_app import celery_app
from fundrec.tasks.maintenance_tasks import purge_events_before
from fundrec.tasks.personalization_tasks import (
    compute_metrics_for_day,
    run_co_occurrence_computation,
    run_preference_aggregation,
)


def test_beat_schedule_registers_nightly_jobs() -> None:
    tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert tasks == {
        "fundrec.tasks.maintenance_tasks.purge_expired_events",
        "fundrec.tasks.personalization_tasks.aggregate_preferences",
        "fundrec.tasks.personalization_tasks.compute_co_occurrences",
        "fundrec.tasks.personalization_tasks.compute_daily_metrics",
    }


def test_preference_aggregation_covers_active_organizations(session_factory, make_program, add_events) -> None:
    program = make_program(category="ICT")
    add_events("org-1", program.id, EventType.VIEW.value, count=6, occurred_at=NOW - timedelta(days=1))
    add_events("org-2", program.id, EventType.SAVE.value, occurred_at=NOW - timedelta(days=2))
    add_events("org-old", program.id, EventType.VIEW.value, occurred_at=NOW - timedelta(days=90))

    summary = run_preference_aggregation(session_factory, now=NOW, batch_size=1, concurrency=1)

    assert summary == {"organizations": 2, "processed": 2, "failed": 0}
    with session_factory() as session:
        assert get_cold_start_status(session, "org-1") == ColdStartTier.PARTIAL_COLD
        assert get_cold_start_status(session, "org-2") == ColdStartTier.FULL_COLD
        assert get_organization_preferences(session, "org-2").category_scores["ICT"] > 0.5
        assert get_organization_preferences(session, "org-old") is None


def test_one_failing_organization_does_not_abort_the_run(session_factory, add_events, monkeypatch) -> None:
    for org in ("org-a", "org-bad", "org-c"):
        add_events(org, "p1", EventType.VIEW.value, occurred_at=NOW - timedelta(days=1))

    real_refresh = personalization_tasks.refresh_organization

    def flaky(session, organization_id, now=None):
        if organization_id == "org-bad":
            raise RuntimeError("corrupt snapshot")
        return real_refresh(session, organization_id, now)

    monkeypatch.setattr(personalization_tasks, "refresh_organization", flaky)
    summary = run_preference_aggregation(session_factory, now=NOW, concurrency=1)

    assert summary == {"organizations": 3, "processed": 2, "failed": 1}


def test_co_occurrence_run_commits(session_factory, add_events) -> None:
    for org in ("org-1", "org-2"):
        add_events(org, "p1", EventType.SAVE.value, occurred_at=NOW - timedelta(days=1))
        add_events(org, "p2", EventType.SAVE.value, occurred_at=NOW - timedelta(days=1))

    assert run_co_occurrence_computation(session_factory, now=NOW) == {"upserted": 1}
    with session_factory() as session:
        assert session.execute(select(func.count(ProgramCoOccurrence.id))).scalar() == 1


def test_daily_metrics_rollup(db, add_events) -> None:
    day_time = NOW - timedelta(days=1)
    add_events("org-1", "p1", EventType.IMPRESSION.value, count=4, occurred_at=day_time, position=0)
    add_events("org-1", "p1", EventType.CLICK.value, occurred_at=day_time, position=0)
    add_events("org-2", "p2", EventType.VIEW.value, count=2, occurred_at=day_time, position=4)
    add_events("org-2", "p2", EventType.SAVE.value, occurred_at=day_time, position=4)
    add_events("org-3", "p3", EventType.CLICK.value, occurred_at=NOW)  # next day

    row = compute_metrics_for_day(db, day_time.date(), "default")
    db.commit()

    assert row.total_impressions == 4
    assert row.total_clicks == 1
    assert row.total_views == 2
    assert row.total_saves == 1
    assert row.unique_organizations == 2
    assert row.unique_programs == 2
    assert row.adjusted_ctr == pytest.approx(1 / 5)
    assert row.adjusted_save_rate == pytest.approx(1 / 3)
    assert row.avg_base_score == pytest.approx(60.0)

    # Rerun updates the same row
    compute_metrics_for_day(db, day_time.date(), "default")
    db.commit()
    assert db.execute(select(func.count(PersonalizationMetric.id))).scalar() == 1


def test_daily_metrics_without_events(db) -> None:
    assert compute_metrics_for_day(db, (NOW - timedelta(days=10)).date()) is None


def test_purge_events_before(db, add_events) -> None:
    add_events("org-1", "p1", EventType.VIEW.value, count=2, occurred_at=NOW - timedelta(days=200))
    add_events("org-1", "p1", EventType.VIEW.value, occurred_at=NOW - timedelta(days=5))

    deleted = purge_events_before(db, NOW - timedelta(days=180))
    db.commit()

    assert deleted == 2
    assert db.execute(select(func.count(RecommendationEvent.id))).scalar() == 1
