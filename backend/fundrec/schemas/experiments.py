"""Pydantic schemas for interleaving experiments."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RankingItemIn(BaseModel):
    program_id: str = Field(min_length=1, max_length=36)
    base_score: float = 0.0
    personalized_score: float = 0.0


class InterleaveRequest(BaseModel):
    ranking_a: list[RankingItemIn] = Field(max_length=500)
    ranking_b: list[RankingItemIn] = Field(max_length=500)
    list_size: int = Field(default=10, ge=1, le=500)
    method: Literal["team_draft", "balanced"] = "team_draft"

    # Optional post-hoc engagement, to compute metrics in the same call
    clicks: list[str] = Field(default_factory=list)
    saves: list[str] = Field(default_factory=list)


class InterleavedItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    program_id: str
    base_score: float
    personalized_score: float
    team: Literal["A", "B"]
    source_rank: int


class InterleavingMetricsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    team_a_clicks: int
    team_b_clicks: int
    team_a_saves: int
    team_b_saves: int
    team_a_wins: bool
    delta: float


class InterleaveResponse(BaseModel):
    items: list[InterleavedItemOut]
    team_a_items: list[str]
    team_b_items: list[str]
    starting_team: Literal["A", "B"]
    metrics: InterleavingMetricsOut | None = None


class SignificanceRequest(BaseModel):
    outcomes: list[bool] = Field(description="Per-session result: true when team A won")
    alpha: float | None = Field(default=None, gt=0, lt=1)


class SignificanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    significant: bool
    p_value: float
    win_rate: float
    sessions: int


class AssignmentResponse(BaseModel):
    organization_id: str
    test_name: str
    bucket: int
    in_treatment: bool | None = None
    variant: str | None = None
