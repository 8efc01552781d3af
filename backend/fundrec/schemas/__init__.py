"""Pydantic schemas package."""

from fundrec.schemas.events import (
    EventBatchIn,
    InteractionEventIn,
    LogEventsResult,
    SessionEventCount,
)
from fundrec.schemas.experiments import (
    AssignmentResponse,
    InterleavedItemOut,
    InterleaveRequest,
    InterleaveResponse,
    InterleavingMetricsOut,
    RankingItemIn,
    SignificanceRequest,
    SignificanceResponse,
)
from fundrec.schemas.personalization import (
    PersonalizationConfigBase,
    PersonalizationConfigCreate,
    PersonalizationConfigRead,
    PersonalizationConfigUpdate,
    PersonalizationMetricRead,
    RankCandidateIn,
    RankConfigOverride,
    RankedItemOut,
    RankRequest,
    RankResponse,
)

__all__ = [
    # Events
    "EventBatchIn",
    "InteractionEventIn",
    "LogEventsResult",
    "SessionEventCount",
    # Experiments
    "AssignmentResponse",
    "InterleavedItemOut",
    "InterleaveRequest",
    "InterleaveResponse",
    "InterleavingMetricsOut",
    "RankingItemIn",
    "SignificanceRequest",
    "SignificanceResponse",
    # Personalization
    "PersonalizationConfigBase",
    "PersonalizationConfigCreate",
    "PersonalizationConfigRead",
    "PersonalizationConfigUpdate",
    "PersonalizationMetricRead",
    "RankCandidateIn",
    "RankConfigOverride",
    "RankedItemOut",
    "RankRequest",
    "RankResponse",
]
