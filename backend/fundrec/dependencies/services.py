"""Service singletons for FastAPI routes.

Each is created once per process and can be swapped in tests through
`app.dependency_overrides`.
"""

from functools import lru_cache

from fundrec.models.base import SessionLocal
from fundrec.services.event_logger import EventLogger, SessionRateLimiter, get_counter_store
from fundrec.services.metrics_collector import MetricsAccumulator, get_metrics_accumulator
from fundrec.services.personalization_layer import PersonalizationService
from fundrec.services.trending_cache import TrendingCache, database_trending_loader


@lru_cache
def get_event_logger() -> EventLogger:
    return EventLogger(SessionRateLimiter(get_counter_store()))


@lru_cache
def get_trending_cache() -> TrendingCache:
    return TrendingCache(database_trending_loader(SessionLocal))


def get_metrics() -> MetricsAccumulator:
    return get_metrics_accumulator()


@lru_cache
def get_personalization_service() -> PersonalizationService:
    return PersonalizationService(trending_cache=get_trending_cache(), metrics=get_metrics_accumulator())
