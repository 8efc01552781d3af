"""Derived organization preferences and cold-start status.

Both tables are rewritten wholesale by the nightly aggregation job.
"""

from sqlalchemy import Column, String, Integer, Float, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB

from fundrec.models.base import Base, TimestampMixin, UUIDMixin

_JSON = JSON().with_variant(JSONB, "postgresql")


class OrganizationPreference(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "organization_preferences"

    organization_id = Column(String(36), unique=True, nullable=False)

    # Dimension scores — each maps dimension value → float [0.0, 1.0], 0.5 neutral
    category_scores = Column(_JSON, default=dict, nullable=False)
    keyword_scores = Column(_JSON, default=dict, nullable=False)
    ministry_scores = Column(_JSON, default=dict, nullable=False)

    total_impressions = Column(Integer, default=0, nullable=False)
    total_views = Column(Integer, default=0, nullable=False)
    total_clicks = Column(Integer, default=0, nullable=False)
    total_saves = Column(Integer, default=0, nullable=False)
    total_dismisses = Column(Integer, default=0, nullable=False)

    # Position-debiased rates (null when there was nothing to rate)
    adjusted_ctr = Column(Float)
    adjusted_save_rate = Column(Float)

    last_computed_at = Column(DateTime(timezone=True))


class OrganizationPersonalizationStatus(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "organization_personalization_status"

    organization_id = Column(String(36), unique=True, nullable=False)
    status = Column(String(20), default="FULL_COLD", nullable=False)  # see ColdStartTier
    total_views = Column(Integer, default=0, nullable=False)
    unique_categories = Column(Integer, default=0, nullable=False)
    first_event_at = Column(DateTime(timezone=True))
    last_event_at = Column(DateTime(timezone=True))
