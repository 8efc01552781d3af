"""Recommendation event ingestion endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fundrec.dependencies.services import get_event_logger
from fundrec.models.base import get_db
from fundrec.schemas.events import EventBatchIn, LogEventsResult, SessionEventCount
from fundrec.services.event_logger import EventLogger

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=LogEventsResult)
def log_events(
    batch: EventBatchIn,
    db: Session = Depends(get_db),
    event_logger: EventLogger = Depends(get_event_logger),
):
    """Log a batch of interaction events.

    Duplicates and rate-limited events are reported as skipped. A storage
    failure is reported in the body (`success: false`) rather than raised.
    """
    return event_logger.log_events(db, batch.events)


@router.get("/sessions/{session_id}", response_model=SessionEventCount)
def session_event_count(session_id: str, event_logger: EventLogger = Depends(get_event_logger)):
    counts = event_logger.get_session_event_count(session_id)
    return SessionEventCount(session_id=session_id, **counts)
