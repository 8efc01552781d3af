"""Personalization orchestrator — fuses base relevance with learned signals.

    final = w_base·base + w_beh·norm(behavioral) + w_cf·norm(cf) + w_ctx·norm(contextual)

Each boost is linearly remapped from its bounded range to [0, 100] before
weighting, and the sum is clamped to [0, 100]. The weight vector depends on
the organization's cold-start tier.

Personalization must never break primary ranking: any failure returns the
candidates with their base scores, flagged through `Result.degraded`.
"""

import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fundrec.models.enums import ColdStartTier, ExplorationStrategy
from fundrec.models.funding_program import FundingProgram
from fundrec.models.personalization_config import PersonalizationConfigRecord
from fundrec.services import behavioral_scorer, contextual_scorer
from fundrec.services.behavioral_scorer import BehavioralBoost, clamp
from fundrec.services.clock import utcnow
from fundrec.services.contextual_scorer import ContextualBoost
from fundrec.services.exploration import (
    ExplorationConfig,
    PersonalizedMatch,
    inject_exploration_slots,
    is_exploration_enabled,
)
from fundrec.services.item_item_cf import CFBoost, get_item_item_boosts
from fundrec.services.metrics_collector import MetricsAccumulator, ProcessingMetric, Timer
from fundrec.services.preference_aggregator import (
    AggregatedPreferences,
    get_cold_start_status,
    get_organization_preferences,
)
from fundrec.services.reasons import explain_reasons
from fundrec.services.result import DegradedReason, Result
from fundrec.services.trending_cache import TrendingCache

logger = logging.getLogger(__name__)

BEHAVIORAL_RANGE = behavioral_scorer.TOTAL_RANGE
CF_RANGE = (0.0, 15.0)
CONTEXTUAL_RANGE = contextual_scorer.TOTAL_RANGE

WEIGHT_TOLERANCE = 0.001


@dataclass
class PersonalizationConfig:
    name: str = "default"

    # Weights (must sum to 1.0)
    base_score_weight: float = 0.55
    behavioral_weight: float = 0.25
    cf_weight: float = 0.10
    contextual_weight: float = 0.10

    enable_behavioral: bool = True
    enable_cf: bool = True
    enable_contextual: bool = True
    enable_exploration: bool = True

    exploration: ExplorationConfig = field(default_factory=ExplorationConfig)

    @property
    def weights(self) -> tuple[float, float, float, float]:
        return (self.base_score_weight, self.behavioral_weight, self.cf_weight, self.contextual_weight)

    def validate(self) -> None:
        if any(w < 0 for w in self.weights):
            raise ValueError("Weights must be non-negative")
        total = sum(self.weights)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Weights must sum to 1.0 (got {total:.3f})")
        self.exploration.validate()


DEFAULT_PERSONALIZATION_CONFIG = PersonalizationConfig()

PARTIAL_COLD_WEIGHTS = {
    "base_score_weight": 0.65,
    "behavioral_weight": 0.15,
    "cf_weight": 0.05,
    "contextual_weight": 0.15,
}

COLD_START_WEIGHTS = {
    "base_score_weight": 0.80,
    "behavioral_weight": 0.0,
    "cf_weight": 0.0,
    "contextual_weight": 0.20,
    "enable_behavioral": False,
    "enable_cf": False,
}

COLD_START_CONFIG = replace(DEFAULT_PERSONALIZATION_CONFIG, **COLD_START_WEIGHTS)


@dataclass
class RankedCandidate:
    """A candidate from the base ranker: already eligibility-filtered and scored."""

    program: FundingProgram
    base_score: float


@dataclass
class PersonalizationOutcome:
    matches: list[PersonalizedMatch]
    cold_start_status: ColdStartTier
    config: PersonalizationConfig
    exploration_count: int = 0


def normalize_boost(boost: float, value_range: tuple[float, float]) -> float:
    """Map [low, high] onto [0, 100]."""
    low, high = value_range
    return (boost - low) / (high - low) * 100


def fuse_scores(
    config: PersonalizationConfig,
    base_score: float,
    behavioral: float = 0.0,
    cf: float = 0.0,
    contextual: float = 0.0,
) -> float:
    score = (
        config.base_score_weight * base_score
        + config.behavioral_weight * normalize_boost(behavioral, BEHAVIORAL_RANGE)
        + config.cf_weight * normalize_boost(cf, CF_RANGE)
        + config.contextual_weight * normalize_boost(contextual, CONTEXTUAL_RANGE)
    )
    return clamp(score, 0.0, 100.0)


def select_config_by_tier(
    tier: ColdStartTier,
    active: PersonalizationConfig | None = None,
    override: dict[str, Any] | None = None,
) -> PersonalizationConfig:
    """Tier variant of the active config, with `override` fields applied last."""
    base = active or DEFAULT_PERSONALIZATION_CONFIG
    if tier == ColdStartTier.FULL_COLD:
        config = replace(base, **COLD_START_WEIGHTS)
    elif tier == ColdStartTier.PARTIAL_COLD:
        config = replace(base, **PARTIAL_COLD_WEIGHTS)
    else:
        config = base

    if override:
        config = replace(config, **override)
    return config


def config_from_record(record: PersonalizationConfigRecord) -> PersonalizationConfig:
    return PersonalizationConfig(
        name=record.name,
        base_score_weight=record.base_score_weight,
        behavioral_weight=record.behavioral_weight,
        cf_weight=record.cf_weight,
        contextual_weight=record.contextual_weight,
        enable_behavioral=record.enable_behavioral,
        enable_cf=record.enable_item_item_cf,
        enable_contextual=record.enable_contextual,
        enable_exploration=record.enable_exploration,
        exploration=ExplorationConfig(
            total_slots=record.total_slots,
            exploration_slots=record.exploration_slots,
            exploration_positions=list(record.exploration_positions or []),
            strategy=ExplorationStrategy(record.exploration_strategy),
        ),
    )


def load_active_config(db: Session) -> PersonalizationConfig | None:
    record = db.execute(
        select(PersonalizationConfigRecord).where(PersonalizationConfigRecord.is_active.is_(True))
    ).scalars().first()
    return config_from_record(record) if record else None


class PersonalizationService:
    """Per-request scorer. Holds only injected collaborators; no request state."""

    def __init__(
        self,
        trending_cache: TrendingCache | None = None,
        metrics: MetricsAccumulator | None = None,
        rng: random.Random | None = None,
    ):
        self.trending_cache = trending_cache
        self.metrics = metrics
        self.rng = rng

    def personalize(
        self,
        db: Session,
        organization_id: str,
        candidates: list[RankedCandidate],
        config_override: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Result[PersonalizationOutcome]:
        timer = Timer()
        now = now or utcnow()

        try:
            result = self._personalize(db, organization_id, candidates, config_override, now)
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("Personalization database error for org %s", organization_id[:8])
            result = Result.fallback(self._fallback(candidates), DegradedReason.DATABASE_UNAVAILABLE, str(e))
        except Exception as e:
            logger.exception("Personalization failed for org %s, using base scores", organization_id[:8])
            result = Result.fallback(self._fallback(candidates), DegradedReason.PERSONALIZATION_FAILED, str(e))

        self._record(organization_id, result, timer.elapsed_ms())
        return result

    def _personalize(
        self,
        db: Session,
        organization_id: str,
        candidates: list[RankedCandidate],
        config_override: dict[str, Any] | None,
        now: datetime,
    ) -> Result[PersonalizationOutcome]:
        tier = get_cold_start_status(db, organization_id)
        preferences = get_organization_preferences(db, organization_id)
        config = select_config_by_tier(tier, load_active_config(db), config_override)
        trending = self._trending_counts()

        if tier == ColdStartTier.FULL_COLD or preferences is None:
            matches = self._contextual_only(candidates, config, trending, now)
            outcome = PersonalizationOutcome(matches=matches, cold_start_status=tier, config=config)
        else:
            outcome = self._full_personalization(
                db, organization_id, candidates, preferences, tier, config, trending, now,
            )

        if self.trending_cache is not None and self.trending_cache.last_error:
            return Result.fallback(outcome, DegradedReason.TRENDING_CACHE_STALE, self.trending_cache.last_error)
        return Result.ok(outcome)

    def _trending_counts(self) -> dict[str, int]:
        if self.trending_cache is None:
            return {}
        return self.trending_cache.get_counts()

    def _contextual_only(
        self,
        candidates: list[RankedCandidate],
        config: PersonalizationConfig,
        trending: dict[str, int],
        now: datetime,
    ) -> list[PersonalizedMatch]:
        matches = []
        for candidate in candidates:
            contextual = contextual_scorer.compute_contextual_boost(candidate.program, trending, now)
            score = clamp(
                config.base_score_weight * candidate.base_score
                + config.contextual_weight * normalize_boost(contextual.boost, CONTEXTUAL_RANGE),
                0.0,
                100.0,
            )
            matches.append(PersonalizedMatch(
                program_id=candidate.program.id,
                base_score=candidate.base_score,
                personalized_score=score,
                breakdown={"behavioral": 0.0, "cf": 0.0, "contextual": contextual.boost},
                reasons=list(contextual.reasons),
                explanations=explain_reasons(contextual.reasons, candidate.program, now),
            ))
        matches.sort(key=lambda m: m.personalized_score, reverse=True)
        return matches

    def _full_personalization(
        self,
        db: Session,
        organization_id: str,
        candidates: list[RankedCandidate],
        preferences: AggregatedPreferences,
        tier: ColdStartTier,
        config: PersonalizationConfig,
        trending: dict[str, int],
        now: datetime,
    ) -> PersonalizationOutcome:
        program_ids = [c.program.id for c in candidates]
        cf_boosts = get_item_item_boosts(db, organization_id, program_ids, now) if config.enable_cf else {}

        matches = []
        for candidate in candidates:
            program = candidate.program
            behavioral = (
                behavioral_scorer.compute_behavioral_boost(program, preferences)
                if config.enable_behavioral else BehavioralBoost()
            )
            cf = cf_boosts.get(program.id, CFBoost())
            contextual = (
                contextual_scorer.compute_contextual_boost(program, trending, now)
                if config.enable_contextual else ContextualBoost()
            )

            reasons = behavioral.reasons + contextual.reasons + cf.reasons
            matches.append(PersonalizedMatch(
                program_id=program.id,
                base_score=candidate.base_score,
                personalized_score=fuse_scores(
                    config, candidate.base_score, behavioral.boost, cf.boost, contextual.boost,
                ),
                breakdown={"behavioral": behavioral.boost, "cf": cf.boost, "contextual": contextual.boost},
                reasons=reasons,
                explanations=explain_reasons(reasons, program, now),
            ))

        matches.sort(key=lambda m: m.personalized_score, reverse=True)

        if not (config.enable_exploration and is_exploration_enabled(config.exploration)):
            return PersonalizationOutcome(matches=matches, cold_start_status=tier, config=config)

        explored = inject_exploration_slots(matches, matches, config.exploration, self.rng)
        return PersonalizationOutcome(
            matches=explored.final_matches,
            cold_start_status=tier,
            config=config,
            exploration_count=explored.exploration_count,
        )

    @staticmethod
    def _fallback(candidates: list[RankedCandidate]) -> PersonalizationOutcome:
        matches = [
            PersonalizedMatch(
                program_id=c.program.id,
                base_score=c.base_score,
                personalized_score=c.base_score,
                breakdown={"behavioral": 0.0, "cf": 0.0, "contextual": 0.0},
            )
            for c in candidates
        ]
        return PersonalizationOutcome(
            matches=matches,
            cold_start_status=ColdStartTier.FULL_COLD,
            config=COLD_START_CONFIG,
        )

    def _record(self, organization_id: str, result: Result[PersonalizationOutcome], elapsed_ms: float) -> None:
        if self.metrics is None:
            return
        matches = result.value.matches
        self.metrics.record(ProcessingMetric(
            organization_id=organization_id,
            processing_time_ms=elapsed_ms,
            cold_start_status=result.value.cold_start_status,
            match_count=len(matches),
            avg_base_score=sum(m.base_score for m in matches) / len(matches) if matches else 0.0,
            avg_personalized_score=sum(m.personalized_score for m in matches) / len(matches) if matches else 0.0,
            exploration_count=result.value.exploration_count,
            degraded=result.is_degraded,
        ))
