"""Personalized ranking, preference inspection and config administration."""

import logging
from collections import defaultdict
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fundrec.dependencies.services import get_metrics, get_personalization_service
from fundrec.models.base import get_db
from fundrec.models.funding_program import FundingProgram
from fundrec.models.personalization_config import PersonalizationConfigRecord
from fundrec.models.personalization_metric import PersonalizationMetric
from fundrec.schemas.personalization import (
    PersonalizationConfigCreate,
    PersonalizationConfigRead,
    PersonalizationConfigUpdate,
    PersonalizationMetricRead,
    RankedItemOut,
    RankRequest,
    RankResponse,
)
from fundrec.services.clock import utcnow
from fundrec.services.item_item_cf import similar_programs
from fundrec.services.metrics_collector import MetricsAccumulator
from fundrec.services.personalization_layer import (
    PersonalizationService,
    RankedCandidate,
    config_from_record,
)
from fundrec.services.preference_aggregator import get_cold_start_status, get_organization_preferences

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/personalization", tags=["personalization"])

# Columns an update may clear; every other config field is required
NULLABLE_CONFIG_FIELDS = {"description", "traffic_percentage"}
RECENT_METRICS_DAYS = 7


@router.post("/{organization_id}/rank", response_model=RankResponse)
def rank_candidates(
    organization_id: str,
    request: RankRequest,
    db: Session = Depends(get_db),
    service: PersonalizationService = Depends(get_personalization_service),
):
    """Re-rank base-scored candidates for an organization."""
    program_ids = [c.program_id for c in request.candidates]
    programs = {
        p.id: p for p in db.execute(
            select(FundingProgram).where(FundingProgram.id.in_(program_ids))
        ).scalars()
    } if program_ids else {}

    missing = [pid for pid in program_ids if pid not in programs]
    if missing:
        raise HTTPException(status_code=404, detail={"message": "Unknown programs", "program_ids": missing})

    candidates = [RankedCandidate(program=programs[c.program_id], base_score=c.base_score) for c in request.candidates]
    overrides = request.config_override.as_overrides() if request.config_override else None

    result = service.personalize(db, organization_id, candidates, config_override=overrides)
    outcome = result.value

    return RankResponse(
        organization_id=organization_id,
        cold_start_status=outcome.cold_start_status,
        config_name=outcome.config.name,
        exploration_count=outcome.exploration_count,
        degraded=result.degraded.value if result.degraded else None,
        items=[RankedItemOut.model_validate(m) for m in outcome.matches],
    )


@router.get("/{organization_id}/preferences")
def organization_preferences(organization_id: str, db: Session = Depends(get_db)):
    """Stored preference snapshot and cold-start tier."""
    preferences = get_organization_preferences(db, organization_id)
    return {
        "organization_id": organization_id,
        "cold_start_status": get_cold_start_status(db, organization_id).value,
        "preferences": vars(preferences) if preferences else None,
    }


@router.get("/programs/{program_id}/similar")
def similar(program_id: str, limit: int = Query(5, ge=1, le=50), db: Session = Depends(get_db)):
    return {"program_id": program_id, "similar": similar_programs(db, program_id, limit)}


@router.get("/metrics")
def metrics_snapshot(metrics: MetricsAccumulator = Depends(get_metrics)):
    """Live accumulator snapshot (not flushed)."""
    snapshot = metrics.snapshot()
    return {
        "snapshot": snapshot.to_dict() if snapshot else None,
        "buffered": len(metrics),
        "last_flushed": metrics.last_flushed.to_dict() if metrics.last_flushed else None,
    }


# --- Config administration ---

def _get_config_or_404(db: Session, config_id: str) -> PersonalizationConfigRecord:
    record = db.get(PersonalizationConfigRecord, config_id)
    if not record:
        raise HTTPException(status_code=404, detail="Config not found")
    return record


def _validate_record(record: PersonalizationConfigRecord) -> None:
    try:
        config_from_record(record).validate()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _deactivate_others(db: Session, keep_id: str | None) -> None:
    stmt = update(PersonalizationConfigRecord).where(PersonalizationConfigRecord.is_active.is_(True))
    if keep_id:
        stmt = stmt.where(PersonalizationConfigRecord.id != keep_id)
    db.execute(stmt.values(is_active=False))


@router.get("/configs", response_model=list[PersonalizationConfigRead])
def list_configs(
    include_metrics: bool = Query(False, description="Attach each config's daily rollups for the last week"),
    db: Session = Depends(get_db),
):
    records = db.execute(
        select(PersonalizationConfigRecord).order_by(PersonalizationConfigRecord.name)
    ).scalars().all()
    configs = [PersonalizationConfigRead.model_validate(record) for record in records]
    if not include_metrics:
        return configs

    since = utcnow().date() - timedelta(days=RECENT_METRICS_DAYS)
    rows = db.execute(
        select(PersonalizationMetric)
        .where(PersonalizationMetric.date >= since)
        .order_by(PersonalizationMetric.date.desc())
    ).scalars().all()

    by_config: dict[str, list[PersonalizationMetricRead]] = defaultdict(list)
    for row in rows:
        by_config[row.config_name].append(PersonalizationMetricRead.model_validate(row))
    for config in configs:
        config.metrics = by_config.get(config.name, [])
    return configs


@router.post("/configs", response_model=PersonalizationConfigRead, status_code=201)
def create_config(data: PersonalizationConfigCreate, db: Session = Depends(get_db)):
    existing = db.execute(
        select(PersonalizationConfigRecord).where(PersonalizationConfigRecord.name == data.name)
    ).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=409, detail="Config name already exists")

    record = PersonalizationConfigRecord(**data.model_dump(mode="json"))
    _validate_record(record)

    db.add(record)
    db.flush()
    if record.is_active:
        _deactivate_others(db, record.id)
    db.refresh(record)
    logger.info("Created personalization config %s (active=%s)", record.name, record.is_active)
    return record


@router.put("/configs/{config_id}", response_model=PersonalizationConfigRead)
def update_config(config_id: str, data: PersonalizationConfigUpdate, db: Session = Depends(get_db)):
    record = _get_config_or_404(db, config_id)

    changes = data.model_dump(mode="json", exclude_unset=True)
    cleared = sorted(key for key, value in changes.items() if value is None and key not in NULLABLE_CONFIG_FIELDS)
    if cleared:
        raise HTTPException(status_code=400, detail=f"Fields cannot be null: {', '.join(cleared)}")

    for key, value in changes.items():
        setattr(record, key, value)
    _validate_record(record)

    db.flush()
    if record.is_active:
        _deactivate_others(db, record.id)
    db.refresh(record)
    logger.info("Updated personalization config %s", record.name)
    return record


@router.delete("/configs/{config_id}", status_code=204)
def delete_config(config_id: str, db: Session = Depends(get_db)):
    record = _get_config_or_404(db, config_id)
    if record.is_active:
        raise HTTPException(status_code=409, detail="Cannot delete the active config")
    db.delete(record)
