"""
Unit tests for migration metrics recorders.

Tests cover:
- InMemoryMetricsRecorder measure/timer recording
- Failure flag on measured blocks that raise
- OpenTelemetryMetricsRecorder data points read back through the SDK
"""

from typing import Any

import pytest

from shardmigrate.metrics import (
    CUTOVER_LOCK,
    CUTOVER_TIME,
    VERIFY_CUTOVER,
    InMemoryMetricsRecorder,
    MetricRecord,
    OpenTelemetryMetricsRecorder,
)
from shardmigrate.protocols import MetricsRecorder


def _find_metric(metrics_data: Any, metric_name: str) -> Any:
    """Find a metric by name in MetricsData from InMemoryMetricReader."""
    if not metrics_data or not metrics_data.resource_metrics:
        return None

    for resource_metric in metrics_data.resource_metrics:
        for scope_metric in resource_metric.scope_metrics:
            for metric in scope_metric.metrics:
                if metric.name == metric_name:
                    return metric
    return None


def _data_point_attributes(metrics_data: Any, metric_name: str) -> list[dict[str, Any]]:
    metric = _find_metric(metrics_data, metric_name)
    if metric is None:
        return []
    return [dict(dp.attributes) for dp in metric.data.data_points]


class TestInMemoryMetricsRecorder:
    """Tests for InMemoryMetricsRecorder."""

    def test_implements_protocol(self):
        assert isinstance(InMemoryMetricsRecorder(), MetricsRecorder)

    def test_measure_records_success(self):
        recorder = InMemoryMetricsRecorder()

        with recorder.measure(CUTOVER_LOCK):
            pass

        assert len(recorder.records) == 1
        record = recorder.records[0]
        assert record.kind == "measure"
        assert record.name == CUTOVER_LOCK
        assert record.seconds >= 0
        assert record.success is True

    def test_measure_records_failure_and_reraises(self):
        recorder = InMemoryMetricsRecorder()

        with pytest.raises(RuntimeError):
            with recorder.measure(VERIFY_CUTOVER):
                raise RuntimeError("boom")

        assert recorder.names == [VERIFY_CUTOVER]
        assert recorder.records[0].success is False

    def test_timer(self):
        recorder = InMemoryMetricsRecorder()

        recorder.timer(CUTOVER_TIME, 1.5)

        assert recorder.records == [MetricRecord("timer", CUTOVER_TIME, 1.5)]
        assert recorder.durations(CUTOVER_TIME) == [1.5]

    def test_snapshot_and_clear(self):
        recorder = InMemoryMetricsRecorder()
        recorder.timer(CUTOVER_TIME, 1.0)
        recorder.timer(CUTOVER_TIME, 2.0)

        assert recorder.snapshot() == {CUTOVER_TIME: [1.0, 2.0]}

        recorder.clear()
        assert recorder.records == []


class TestOpenTelemetryMetricsRecorder:
    """Tests for OpenTelemetryMetricsRecorder."""

    def test_implements_protocol(self, meter_provider):
        assert isinstance(
            OpenTelemetryMetricsRecorder("42", meter_provider=meter_provider),
            MetricsRecorder,
        )

    def test_measure_records_duration(self, meter_provider, metric_reader):
        recorder = OpenTelemetryMetricsRecorder("42", meter_provider=meter_provider)

        with recorder.measure(CUTOVER_LOCK):
            pass

        data = metric_reader.get_metrics_data()
        assert _data_point_attributes(data, "shardmigrate.step.duration") == [
            {"shard": "42", "step": CUTOVER_LOCK}
        ]
        failures = _find_metric(data, "shardmigrate.step.failures")
        assert failures is None or sum(dp.value for dp in failures.data.data_points) == 0

    def test_measure_counts_failures(self, meter_provider, metric_reader):
        recorder = OpenTelemetryMetricsRecorder("42", meter_provider=meter_provider)

        with pytest.raises(ValueError):
            with recorder.measure(VERIFY_CUTOVER):
                raise ValueError("bad")

        data = metric_reader.get_metrics_data()
        failures = _find_metric(data, "shardmigrate.step.failures")
        assert failures is not None
        assert sum(dp.value for dp in failures.data.data_points) == 1
        assert _data_point_attributes(data, "shardmigrate.step.duration") == [
            {"shard": "42", "step": VERIFY_CUTOVER}
        ]

    def test_timer(self, meter_provider, metric_reader):
        recorder = OpenTelemetryMetricsRecorder("42", meter_provider=meter_provider)

        recorder.timer(CUTOVER_TIME, 2.5)

        data = metric_reader.get_metrics_data()
        timer = _find_metric(data, "shardmigrate.timer.duration")
        assert timer is not None
        point = timer.data.data_points[0]
        assert dict(point.attributes) == {"shard": "42", "timer": CUTOVER_TIME}
        assert point.sum == 2.5
        assert point.count == 1
