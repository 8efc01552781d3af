"""Recommendation event model — append-only interaction log."""

from sqlalchemy import Column, String, Integer, Float, DateTime, Index, func

from fundrec.models.base import Base, UUIDMixin


class RecommendationEvent(UUIDMixin, Base):
    __tablename__ = "recommendation_events"

    schema_version = Column(Integer, default=1, nullable=False)

    # Client-generated idempotency key; the unique constraint absorbs retries
    event_id = Column(String(64), unique=True, nullable=False)

    organization_id = Column(String(36), nullable=False)
    program_id = Column(String(36), nullable=False)
    user_id = Column(String(36))
    session_id = Column(String(64), nullable=False)
    event_type = Column(String(20), nullable=False)  # see fundrec.models.enums.EventType

    # List context
    position = Column(Integer, nullable=False)
    list_size = Column(Integer, nullable=False)
    match_score = Column(Float, nullable=False)

    # Engagement quality
    dwell_time_ms = Column(Integer)
    visibility_ratio = Column(Float)
    scroll_depth = Column(Float)

    # Client metadata
    source = Column(String(50))
    device_type = Column(String(20))
    client_tz_offset_min = Column(Integer)
    batch_id = Column(String(64))

    occurred_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_rec_events_org_time", "organization_id", "occurred_at"),
        Index("idx_rec_events_type_time", "event_type", "occurred_at"),
        Index("idx_rec_events_program", "program_id"),
        Index("idx_rec_events_session", "session_id"),
    )
