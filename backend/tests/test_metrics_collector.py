from __future__ import annotations

import threading

import pytest

from fundrec.models.enums import ColdStartTier
from fundrec.services.metrics_collector import MetricsAccumulator, ProcessingMetric, percentile
from fundrec.services.position_bias import (
    Engagement,
    adjusted_rate,
    cascade_bias_factor,
    compute_debiased_rate,
    position_bias_factor,
)


def _metric(ms: float = 10.0, tier: ColdStartTier = ColdStartTier.WARM, **kwargs) -> ProcessingMetric:
    fields = {
        "organization_id": "org-1",
        "processing_time_ms": ms,
        "cold_start_status": tier,
        "match_count": 10,
        "avg_base_score": 50.0,
        "avg_personalized_score": 55.0,
        "exploration_count": 2,
    }
    fields.update(kwargs)
    return ProcessingMetric(**fields)


def test_empty_accumulator() -> None:
    acc = MetricsAccumulator(config_name="test", max_buffer_size=100)
    assert acc.snapshot() is None
    assert acc.flush() is None
    assert acc.last_flushed is None


def test_snapshot_aggregates() -> None:
    acc = MetricsAccumulator(config_name="test", max_buffer_size=100)
    for ms in range(1, 21):
        tier = ColdStartTier.FULL_COLD if ms <= 5 else ColdStartTier.WARM
        acc.record(_metric(ms=float(ms), tier=tier, degraded=ms == 20))

    snap = acc.snapshot()
    assert snap.request_count == 20
    assert snap.avg_processing_time_ms == pytest.approx(10.5)
    assert snap.p95_processing_time_ms == 19.0
    assert snap.cold_start_breakdown == {"FULL_COLD": 5, "PARTIAL_COLD": 0, "WARM": 15}
    assert snap.avg_score_lift == pytest.approx(5.0)
    assert snap.total_exploration_slots == 40
    assert snap.degraded_count == 1
    assert snap.config_name == "test"
    # Snapshot does not drain the buffer
    assert len(acc) == 20


def test_flush_resets_buffer() -> None:
    acc = MetricsAccumulator(max_buffer_size=100)
    acc.record(_metric())
    acc.set_config_name("variant-b")

    snap = acc.flush()
    assert snap.request_count == 1
    assert snap.config_name == "variant-b"
    assert len(acc) == 0
    assert acc.last_flushed is snap
    assert acc.flush() is None


def test_full_buffer_flushes_eagerly() -> None:
    acc = MetricsAccumulator(max_buffer_size=3)
    for _ in range(3):
        acc.record(_metric())
    assert len(acc) == 0
    assert acc.last_flushed.request_count == 3


def test_concurrent_records_are_not_lost() -> None:
    acc = MetricsAccumulator(max_buffer_size=100_000)

    def worker() -> None:
        for _ in range(250):
            acc.record(_metric())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert acc.flush().request_count == 2000


def test_snapshot_to_dict() -> None:
    acc = MetricsAccumulator(max_buffer_size=100)
    acc.record(_metric())
    data = acc.snapshot().to_dict()
    assert isinstance(data["timestamp"], str)
    assert data["request_count"] == 1


@pytest.mark.parametrize(
    "values,p,expected",
    [
        ([], 95, 0.0),
        ([5.0], 95, 5.0),
        ([1.0, 2.0, 3.0, 4.0], 50, 2.0),
        ([1.0, 2.0, 3.0, 4.0], 100, 4.0),
    ],
)
def test_percentile(values, p, expected) -> None:
    assert percentile(values, p) == expected


def test_position_bias_curve() -> None:
    assert position_bias_factor(0, 10) == 1.0
    assert position_bias_factor(5, 1) == 1.0
    factors = [position_bias_factor(p, 10) for p in range(10)]
    assert factors == sorted(factors, reverse=True)


def test_adjusted_rate_weights_top_positions() -> None:
    top_engaged = adjusted_rate([Engagement(0, 10, True), Engagement(9, 10, False)])
    bottom_engaged = adjusted_rate([Engagement(0, 10, False), Engagement(9, 10, True)])
    assert top_engaged > 0.5 > bottom_engaged
    assert adjusted_rate([]) == 0.0


def test_cascade_factors() -> None:
    assert cascade_bias_factor(1) == 1.0
    assert cascade_bias_factor(3) == 0.72
    assert cascade_bias_factor(50) == 0.25
    assert cascade_bias_factor(0) == 1.0


def test_debiased_rate_upweights_low_ranks() -> None:
    rate = compute_debiased_rate([(1, "CLICK"), (10, "IMPRESSION")], "CLICK")
    assert rate == pytest.approx(1.0 / (1.0 + 1 / 0.27))
    assert compute_debiased_rate([], "CLICK") == 0.0
