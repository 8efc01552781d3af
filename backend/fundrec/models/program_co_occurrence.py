"""Program co-occurrence model — item-item CF matrix (top pairs only)."""

from sqlalchemy import Column, String, Integer, Float, UniqueConstraint, Index

from fundrec.models.base import Base, TimestampMixin, UUIDMixin


class ProgramCoOccurrence(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "program_co_occurrences"

    # Canonical ordering: program_a < program_b
    program_a = Column(String(36), nullable=False)
    program_b = Column(String(36), nullable=False)

    co_save_count = Column(Integer, default=0, nullable=False)
    co_view_count = Column(Integer, default=0, nullable=False)
    confidence = Column(Float, default=0.0, nullable=False)  # Wilson lower bound

    __table_args__ = (
        UniqueConstraint("program_a", "program_b", name="uq_co_occurrence_pair"),
        Index("idx_co_occurrence_b", "program_b"),
    )
