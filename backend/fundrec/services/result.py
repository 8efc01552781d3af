"""Result wrapper that makes degraded/fallback paths visible to callers."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class DegradedReason(str, Enum):
    DATABASE_UNAVAILABLE = "database_unavailable"
    TRENDING_CACHE_STALE = "trending_cache_stale"
    PERSONALIZATION_FAILED = "personalization_failed"


@dataclass
class Result(Generic[T]):
    """A value plus the reason it was produced on a fallback path, if any."""

    value: T
    degraded: DegradedReason | None = None
    detail: str | None = None

    @property
    def is_degraded(self) -> bool:
        return self.degraded is not None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, reason: DegradedReason, detail: str | None = None) -> "Result[T]":
        return cls(value=value, degraded=reason, detail=detail)
