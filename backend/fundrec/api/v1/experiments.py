"""Interleaving experiments and deterministic test assignment."""

from fastapi import APIRouter, HTTPException, Query

from fundrec.config import get_settings
from fundrec.schemas.experiments import (
    AssignmentResponse,
    InterleavedItemOut,
    InterleaveRequest,
    InterleaveResponse,
    InterleavingMetricsOut,
    SignificanceRequest,
    SignificanceResponse,
)
from fundrec.services.exploration import PersonalizedMatch
from fundrec.services.interleaving import (
    assignment_bucket,
    balanced_interleave,
    compute_interleaving_metrics,
    get_test_variant,
    interleaving_significance,
    is_in_treatment_group,
    team_draft_interleave,
)

router = APIRouter(prefix="/experiments", tags=["experiments"])
settings = get_settings()


@router.post("/interleave", response_model=InterleaveResponse)
def interleave(request: InterleaveRequest):
    ranking_a = [PersonalizedMatch(**item.model_dump()) for item in request.ranking_a]
    ranking_b = [PersonalizedMatch(**item.model_dump()) for item in request.ranking_b]

    interleave_fn = team_draft_interleave if request.method == "team_draft" else balanced_interleave
    result = interleave_fn(ranking_a, ranking_b, request.list_size)

    metrics = None
    if request.clicks or request.saves:
        metrics = InterleavingMetricsOut.model_validate(
            compute_interleaving_metrics(result, request.clicks, request.saves)
        )

    return InterleaveResponse(
        items=[InterleavedItemOut.model_validate(m) for m in result.interleaved],
        team_a_items=result.team_a_items,
        team_b_items=result.team_b_items,
        starting_team=result.starting_team,
        metrics=metrics,
    )


@router.post("/significance", response_model=SignificanceResponse)
def significance(request: SignificanceRequest):
    alpha = request.alpha if request.alpha is not None else settings.experiment_alpha
    return interleaving_significance(request.outcomes, alpha)


@router.get("/{test_name}/assignment/{organization_id}", response_model=AssignmentResponse)
def assignment(
    test_name: str,
    organization_id: str,
    traffic_percentage: float | None = Query(None, ge=0, le=100),
    variants: list[str] = Query(default=[]),
):
    """Stable bucket for (organization, test); optional treatment flag and variant."""
    try:
        variant = get_test_variant(organization_id, test_name, variants) if variants else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AssignmentResponse(
        organization_id=organization_id,
        test_name=test_name,
        bucket=assignment_bucket(organization_id, test_name),
        in_treatment=(
            is_in_treatment_group(organization_id, test_name, traffic_percentage)
            if traffic_percentage is not None else None
        ),
        variant=variant,
    )
