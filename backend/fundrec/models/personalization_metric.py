"""Daily personalization metrics rollup."""

from sqlalchemy import Column, String, Integer, Float, Date, UniqueConstraint

from fundrec.models.base import Base, TimestampMixin, UUIDMixin


class PersonalizationMetric(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "personalization_metrics"

    date = Column(Date, nullable=False)
    config_name = Column(String(100), default="default", nullable=False)

    total_impressions = Column(Integer, default=0, nullable=False)
    total_views = Column(Integer, default=0, nullable=False)
    total_clicks = Column(Integer, default=0, nullable=False)
    total_saves = Column(Integer, default=0, nullable=False)
    total_dismisses = Column(Integer, default=0, nullable=False)
    unique_organizations = Column(Integer, default=0, nullable=False)
    unique_programs = Column(Integer, default=0, nullable=False)

    adjusted_ctr = Column(Float)
    adjusted_save_rate = Column(Float)
    avg_base_score = Column(Float)

    __table_args__ = (
        UniqueConstraint("date", "config_name", name="uq_metrics_date_config"),
    )
