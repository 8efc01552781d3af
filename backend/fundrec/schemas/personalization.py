"""Pydantic schemas for ranking and personalization config administration."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fundrec.models.enums import ColdStartTier, ExplorationStrategy

WEIGHT_FIELDS = ("base_score_weight", "behavioral_weight", "cf_weight", "contextual_weight")


class RankCandidateIn(BaseModel):
    program_id: str = Field(min_length=1, max_length=36)
    base_score: float = Field(ge=0, le=100)


class RankConfigOverride(BaseModel):
    """Per-request overrides; weights must be given all together."""

    base_score_weight: float | None = Field(default=None, ge=0, le=1)
    behavioral_weight: float | None = Field(default=None, ge=0, le=1)
    cf_weight: float | None = Field(default=None, ge=0, le=1)
    contextual_weight: float | None = Field(default=None, ge=0, le=1)
    enable_behavioral: bool | None = None
    enable_cf: bool | None = None
    enable_contextual: bool | None = None
    enable_exploration: bool | None = None

    @model_validator(mode="after")
    def check_weights(self):
        given = [getattr(self, name) for name in WEIGHT_FIELDS if getattr(self, name) is not None]
        if given and len(given) != len(WEIGHT_FIELDS):
            raise ValueError("Override either all four weights or none")
        if given and abs(sum(given) - 1.0) > 0.001:
            raise ValueError("Weights must sum to 1.0")
        return self

    def as_overrides(self) -> dict:
        return self.model_dump(exclude_none=True)


class RankRequest(BaseModel):
    candidates: list[RankCandidateIn] = Field(max_length=500)
    config_override: RankConfigOverride | None = None


class RankedItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    program_id: str
    base_score: float
    personalized_score: float
    breakdown: dict[str, float]
    reasons: list[str]
    explanations: list[str]
    is_exploration: bool = False
    exploration_reason: str | None = None


class RankResponse(BaseModel):
    organization_id: str
    cold_start_status: ColdStartTier
    config_name: str
    exploration_count: int
    degraded: str | None = None
    items: list[RankedItemOut]


# --- Config administration ---

class PersonalizationConfigBase(BaseModel):
    description: str | None = None

    base_score_weight: float = Field(default=0.55, ge=0, le=1)
    behavioral_weight: float = Field(default=0.25, ge=0, le=1)
    cf_weight: float = Field(default=0.10, ge=0, le=1)
    contextual_weight: float = Field(default=0.10, ge=0, le=1)

    enable_behavioral: bool = True
    enable_item_item_cf: bool = True
    enable_contextual: bool = True
    enable_exploration: bool = True

    total_slots: int = Field(default=10, ge=1, le=100)
    exploration_slots: int = Field(default=2, ge=0, le=100)
    exploration_positions: list[int] = Field(default_factory=lambda: [3, 7])
    exploration_strategy: ExplorationStrategy = ExplorationStrategy.EPSILON_GREEDY

    traffic_percentage: int | None = Field(default=None, ge=0, le=100)


class PersonalizationConfigCreate(PersonalizationConfigBase):
    name: str = Field(min_length=1, max_length=100)
    is_active: bool = False


class PersonalizationConfigUpdate(BaseModel):
    """Partial update. The name is immutable."""

    description: str | None = None
    base_score_weight: float | None = Field(default=None, ge=0, le=1)
    behavioral_weight: float | None = Field(default=None, ge=0, le=1)
    cf_weight: float | None = Field(default=None, ge=0, le=1)
    contextual_weight: float | None = Field(default=None, ge=0, le=1)
    enable_behavioral: bool | None = None
    enable_item_item_cf: bool | None = None
    enable_contextual: bool | None = None
    enable_exploration: bool | None = None
    total_slots: int | None = Field(default=None, ge=1, le=100)
    exploration_slots: int | None = Field(default=None, ge=0, le=100)
    exploration_positions: list[int] | None = None
    exploration_strategy: ExplorationStrategy | None = None
    traffic_percentage: int | None = Field(default=None, ge=0, le=100)
    is_active: bool | None = None


class PersonalizationMetricRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    config_name: str
    total_impressions: int
    total_views: int
    total_clicks: int
    total_saves: int
    total_dismisses: int
    unique_organizations: int
    unique_programs: int
    adjusted_ctr: float | None = None
    adjusted_save_rate: float | None = None
    avg_base_score: float | None = None


class PersonalizationConfigRead(PersonalizationConfigBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Only filled when listing with include_metrics
    metrics: list[PersonalizationMetricRead] | None = None
