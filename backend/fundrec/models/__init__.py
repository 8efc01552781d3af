"""ORM models. Importing this package registers every table on Base.metadata."""

from fundrec.models.base import Base
from fundrec.models.funding_program import FundingProgram
from fundrec.models.organization_preference import (
    OrganizationPersonalizationStatus,
    OrganizationPreference,
)
from fundrec.models.personalization_config import PersonalizationConfigRecord
from fundrec.models.personalization_metric import PersonalizationMetric
from fundrec.models.program_co_occurrence import ProgramCoOccurrence
from fundrec.models.recommendation_event import RecommendationEvent

__all__ = [
    "Base",
    "FundingProgram",
    "OrganizationPersonalizationStatus",
    "OrganizationPreference",
    "PersonalizationConfigRecord",
    "PersonalizationMetric",
    "ProgramCoOccurrence",
    "RecommendationEvent",
]
