"""Maintenance tasks — event retention."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session

from fundrec.config import get_settings
from fundrec.models.base import SessionLocal
from fundrec.models.recommendation_event import RecommendationEvent
from fundrec.services.clock import utcnow
from fundrec.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)
settings = get_settings()


def purge_events_before(db: Session, cutoff: datetime) -> int:
    result = db.execute(
        delete(RecommendationEvent).where(RecommendationEvent.occurred_at < cutoff)
    )
    return result.rowcount or 0


@celery_app.task(name="fundrec.tasks.maintenance_tasks.purge_expired_events")
def purge_expired_events():
    """Delete events older than the retention window (default 180 days)."""
    db = SessionLocal()
    try:
        cutoff = utcnow() - timedelta(days=settings.event_retention_days)
        deleted = purge_events_before(db, cutoff)
        db.commit()
        logger.info("Purged %d events older than %s", deleted, cutoff.date())
        return {"deleted": deleted}
    except Exception:
        db.rollback()
        logger.exception("Event purge failed")
        raise
    finally:
        db.close()
