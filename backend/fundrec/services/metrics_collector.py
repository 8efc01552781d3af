"""In-process personalization metrics.

`MetricsAccumulator` buffers one `ProcessingMetric` per personalization
request. The buffer is flushed every minute by a background task in the API
process and eagerly whenever it reaches its cap; flush and reset happen under one lock so
no concurrent `record` is lost or double counted.
"""

import logging
import math
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime

from fundrec.config import get_settings
from fundrec.models.enums import ColdStartTier
from fundrec.services.clock import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class ProcessingMetric:
    organization_id: str
    processing_time_ms: float
    cold_start_status: ColdStartTier
    match_count: int
    avg_base_score: float
    avg_personalized_score: float
    exploration_count: int
    degraded: bool = False


@dataclass
class MetricsSnapshot:
    timestamp: datetime
    config_name: str
    request_count: int
    avg_processing_time_ms: float
    p95_processing_time_ms: float
    cold_start_breakdown: dict[str, int] = field(default_factory=dict)
    avg_base_score: float = 0.0
    avg_personalized_score: float = 0.0
    avg_score_lift: float = 0.0
    total_exploration_slots: int = 0
    degraded_count: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def percentile(sorted_values: list[float], p: float) -> float:
    """Nearest-rank percentile of an ascending list."""
    if not sorted_values:
        return 0.0
    index = math.ceil(p / 100 * len(sorted_values)) - 1
    return sorted_values[max(0, min(index, len(sorted_values) - 1))]


class MetricsAccumulator:
    def __init__(self, config_name: str | None = None, max_buffer_size: int | None = None):
        self.config_name = config_name or settings.metrics_config_name
        self.max_buffer_size = max_buffer_size or settings.metrics_buffer_size
        self._metrics: list[ProcessingMetric] = []
        self._lock = threading.Lock()
        self.last_flushed: MetricsSnapshot | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    def record(self, metric: ProcessingMetric) -> None:
        with self._lock:
            self._metrics.append(metric)
            full = len(self._metrics) >= self.max_buffer_size
        if full:
            snapshot = self.flush()
            if snapshot:
                logger.info(
                    "Metrics buffer full, flushed %d requests (avg %.2f ms)",
                    snapshot.request_count, snapshot.avg_processing_time_ms,
                )

    def set_config_name(self, name: str) -> None:
        with self._lock:
            self.config_name = name

    def snapshot(self) -> MetricsSnapshot | None:
        with self._lock:
            return self._build_snapshot(list(self._metrics))

    def flush(self) -> MetricsSnapshot | None:
        """Return the current snapshot and empty the buffer atomically."""
        with self._lock:
            metrics, self._metrics = self._metrics, []
            snapshot = self._build_snapshot(metrics)
            if snapshot:
                self.last_flushed = snapshot
            return snapshot

    def _build_snapshot(self, metrics: list[ProcessingMetric]) -> MetricsSnapshot | None:
        if not metrics:
            return None

        times = sorted(m.processing_time_ms for m in metrics)
        avg_base = average([m.avg_base_score for m in metrics])
        avg_personalized = average([m.avg_personalized_score for m in metrics])

        breakdown = {tier.value: 0 for tier in ColdStartTier}
        for m in metrics:
            breakdown[ColdStartTier(m.cold_start_status).value] += 1

        return MetricsSnapshot(
            timestamp=utcnow(),
            config_name=self.config_name,
            request_count=len(metrics),
            avg_processing_time_ms=average(times),
            p95_processing_time_ms=percentile(times, 95),
            cold_start_breakdown=breakdown,
            avg_base_score=avg_base,
            avg_personalized_score=avg_personalized,
            avg_score_lift=avg_personalized - avg_base,
            total_exploration_slots=sum(m.exploration_count for m in metrics),
            degraded_count=sum(1 for m in metrics if m.degraded),
        )


class Timer:
    """Wall-clock timer in milliseconds."""

    def __init__(self):
        self.start = time.perf_counter()

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start) * 1000


_default_accumulator: MetricsAccumulator | None = None
_default_lock = threading.Lock()


def get_metrics_accumulator() -> MetricsAccumulator:
    """Process-wide accumulator shared by the API and the flush task."""
    global _default_accumulator
    with _default_lock:
        if _default_accumulator is None:
            _default_accumulator = MetricsAccumulator()
        return _default_accumulator
