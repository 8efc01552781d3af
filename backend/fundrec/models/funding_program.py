"""Funding program model — read-only here; populated by the ingestion pipeline."""

from sqlalchemy import Column, String, Text, DateTime, JSON, Index
from sqlalchemy.dialects.postgresql import JSONB

from fundrec.models.base import Base, TimestampMixin, UUIDMixin


class FundingProgram(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "funding_programs"

    title = Column(Text, nullable=False)
    category = Column(String(50), index=True)  # BIO_HEALTH, ICT, MANUFACTURING, ...
    keywords = Column(JSON().with_variant(JSONB, "postgresql"), default=list, nullable=False)
    ministry = Column(String(100), index=True)
    deadline = Column(DateTime(timezone=True))
    status = Column(String(20), default="ACTIVE", nullable=False)  # see ProgramStatus

    __table_args__ = (
        Index("idx_programs_status_deadline", "status", "deadline"),
    )
