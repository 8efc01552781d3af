"""Celery tasks for nightly personalization batch jobs."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from fundrec.config import get_settings
from fundrec.models.base import SessionLocal
from fundrec.models.enums import EventType
from fundrec.models.personalization_metric import PersonalizationMetric
from fundrec.models.recommendation_event import RecommendationEvent
from fundrec.services import item_item_cf
from fundrec.services.clock import utcnow
from fundrec.services.position_bias import compute_debiased_rate
from fundrec.services.preference_aggregator import refresh_organization
from fundrec.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)
settings = get_settings()


def organizations_with_events(db: Session, since: datetime) -> list[str]:
    return list(db.execute(
        select(RecommendationEvent.organization_id)
        .where(RecommendationEvent.occurred_at >= since)
        .distinct()
    ).scalars())


def _refresh_one(session_factory: sessionmaker, organization_id: str, now: datetime) -> bool:
    """Aggregate one organization in its own session. Failures are logged, not raised."""
    with session_factory() as session:
        try:
            refresh_organization(session, organization_id, now)
            session.commit()
            return True
        except Exception:
            session.rollback()
            logger.exception("Failed to aggregate preferences for org %s", organization_id[:8])
            return False


def run_preference_aggregation(
    session_factory: sessionmaker = SessionLocal,
    now: datetime | None = None,
    batch_size: int | None = None,
    concurrency: int | None = None,
) -> dict:
    """Recompute snapshots for every organization active in the learning window.

    Organizations are processed in chunks with a bounded thread pool; one
    organization's failure is counted and never aborts the run.
    """
    now = now or utcnow()
    batch_size = batch_size or settings.aggregation_batch_size
    concurrency = concurrency or settings.aggregation_concurrency
    started = time.monotonic()

    with session_factory() as session:
        organization_ids = organizations_with_events(
            session, now - timedelta(days=settings.learning_window_days)
        )

    logger.info("Aggregating preferences for %d organizations", len(organization_ids))
    processed = 0
    failed = 0

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for i in range(0, len(organization_ids), batch_size):
            chunk = organization_ids[i:i + batch_size]
            for ok in pool.map(lambda org_id: _refresh_one(session_factory, org_id, now), chunk):
                if ok:
                    processed += 1
                else:
                    failed += 1

    duration = round(time.monotonic() - started, 1)
    logger.info("Preference aggregation done: %d processed, %d failed (%.1fs)", processed, failed, duration)
    return {"organizations": len(organization_ids), "processed": processed, "failed": failed}


@celery_app.task(name="fundrec.tasks.personalization_tasks.aggregate_preferences")
def aggregate_preferences():
    return run_preference_aggregation()


def run_co_occurrence_computation(session_factory: sessionmaker = SessionLocal, now: datetime | None = None) -> dict:
    with session_factory() as session:
        try:
            upserted = item_item_cf.compute_co_occurrences(session, now)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Co-occurrence computation failed")
            raise
    return {"upserted": upserted}


@celery_app.task(name="fundrec.tasks.personalization_tasks.compute_co_occurrences")
def compute_co_occurrences():
    return run_co_occurrence_computation()


def compute_metrics_for_day(db: Session, day: date, config_name: str | None = None) -> PersonalizationMetric | None:
    """Upsert the rollup row for one UTC day. Returns None when there were no events."""
    config_name = config_name or settings.metrics_config_name
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    events = db.execute(
        select(
            RecommendationEvent.organization_id,
            RecommendationEvent.program_id,
            RecommendationEvent.event_type,
            RecommendationEvent.position,
            RecommendationEvent.match_score,
        ).where(
            RecommendationEvent.occurred_at >= start,
            RecommendationEvent.occurred_at < start + timedelta(days=1),
        )
    ).all()

    if not events:
        return None

    counts = {t: 0 for t in EventType}
    for event in events:
        try:
            counts[EventType(event.event_type)] += 1
        except ValueError:
            continue

    # Ranks are 1-indexed for the cascade table
    ctr_events = [
        (e.position + 1, e.event_type) for e in events
        if e.event_type in (EventType.IMPRESSION.value, EventType.CLICK.value)
    ]
    save_events = [
        (e.position + 1, e.event_type) for e in events
        if e.event_type in (EventType.VIEW.value, EventType.SAVE.value)
    ]
    scores = [e.match_score for e in events if e.match_score is not None]

    row = db.execute(
        select(PersonalizationMetric).where(
            PersonalizationMetric.date == day,
            PersonalizationMetric.config_name == config_name,
        )
    ).scalar_one_or_none()

    if not row:
        row = PersonalizationMetric(date=day, config_name=config_name)
        db.add(row)

    row.total_impressions = counts[EventType.IMPRESSION]
    row.total_views = counts[EventType.VIEW]
    row.total_clicks = counts[EventType.CLICK]
    row.total_saves = counts[EventType.SAVE]
    row.total_dismisses = counts[EventType.DISMISS]
    row.unique_organizations = len({e.organization_id for e in events})
    row.unique_programs = len({e.program_id for e in events})
    row.adjusted_ctr = compute_debiased_rate(ctr_events, EventType.CLICK.value) if ctr_events else None
    row.adjusted_save_rate = compute_debiased_rate(save_events, EventType.SAVE.value) if save_events else None
    row.avg_base_score = sum(scores) / len(scores) if scores else None
    db.flush()
    return row


@celery_app.task(name="fundrec.tasks.personalization_tasks.compute_daily_metrics")
def compute_daily_metrics():
    """Roll up yesterday (UTC), a complete day of data."""
    yesterday = (utcnow() - timedelta(days=1)).date()
    with SessionLocal() as session:
        try:
            row = compute_metrics_for_day(session, yesterday)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Daily metrics computation failed for %s", yesterday)
            raise

    if row is None:
        logger.info("No events for %s", yesterday)
        return {"date": yesterday.isoformat(), "events": 0}

    logger.info(
        "Metrics saved for %s: %d impressions, %d clicks, %d saves",
        yesterday, row.total_impressions, row.total_clicks, row.total_saves,
    )
    return {
        "date": yesterday.isoformat(),
        "impressions": row.total_impressions,
        "clicks": row.total_clicks,
        "saves": row.total_saves,
    }
