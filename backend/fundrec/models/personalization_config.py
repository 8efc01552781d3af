"""Personalization config model — weight vectors and feature flags for A/B control."""

from sqlalchemy import Column, String, Text, Integer, Float, Boolean, JSON

from fundrec.models.base import Base, TimestampMixin, UUIDMixin


class PersonalizationConfigRecord(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "personalization_configs"

    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)

    # Weights (must sum to 1.0)
    base_score_weight = Column(Float, default=0.55, nullable=False)
    behavioral_weight = Column(Float, default=0.25, nullable=False)
    cf_weight = Column(Float, default=0.10, nullable=False)
    contextual_weight = Column(Float, default=0.10, nullable=False)

    # Feature flags
    enable_behavioral = Column(Boolean, default=True, nullable=False)
    enable_item_item_cf = Column(Boolean, default=True, nullable=False)
    enable_contextual = Column(Boolean, default=True, nullable=False)
    enable_exploration = Column(Boolean, default=True, nullable=False)

    # Exploration
    total_slots = Column(Integer, default=10, nullable=False)
    exploration_slots = Column(Integer, default=2, nullable=False)
    exploration_positions = Column(JSON, default=lambda: [3, 7], nullable=False)
    exploration_strategy = Column(String(20), default="epsilon_greedy", nullable=False)

    traffic_percentage = Column(Integer)
    is_active = Column(Boolean, default=False, nullable=False, index=True)
