"""
Timing metrics for shard migration.

The migrator receives a ``MetricsRecorder`` at construction and reports:

- measured steps (``VerifyBeforeCutover``, ``CutoverLock``,
  ``deltaCopyJoinedTables``, ``VerifyCutover``, ``CutoverUnlock``) through
  ``measure(name)``
- the ``CutoverTime`` timer, from lock acquisition to unlock, through
  ``timer(name, seconds)``

Recorders:
- OpenTelemetryMetricsRecorder: Reports to an OpenTelemetry meter.
- InMemoryMetricsRecorder: Keeps every record in memory for tests and dry runs.

Metrics Exposed (OpenTelemetry):
    - shardmigrate.step.duration (Histogram, s): Duration of each measured step
    - shardmigrate.step.failures (Counter): Measured steps that raised
    - shardmigrate.timer.duration (Histogram, s): Named timers such as CutoverTime

All metrics carry the ``shard`` attribute.
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import metrics

VERIFY_BEFORE_CUTOVER = "VerifyBeforeCutover"
CUTOVER_LOCK = "CutoverLock"
DELTA_COPY_JOINED_TABLES = "deltaCopyJoinedTables"
VERIFY_CUTOVER = "VerifyCutover"
CUTOVER_UNLOCK = "CutoverUnlock"
CUTOVER_TIME = "CutoverTime"


class OpenTelemetryMetricsRecorder:
    """
    Metrics recorder backed by OpenTelemetry.

    Args:
        shard: Shard identifier attached to every data point.
        meter_provider: Meter provider to use; the global one by default.
    """

    def __init__(self, shard: str, meter_provider: metrics.MeterProvider | None = None) -> None:
        self._shard = shard
        if meter_provider is not None:
            meter = meter_provider.get_meter("shardmigrate", version="1.0.0")
        else:
            meter = metrics.get_meter("shardmigrate", version="1.0.0")

        self._step_duration = meter.create_histogram(
            name="shardmigrate.step.duration",
            unit="s",
            description="Duration of measured migration steps in seconds",
        )
        self._step_failures = meter.create_counter(
            name="shardmigrate.step.failures",
            unit="failures",
            description="Number of measured migration steps that raised",
        )
        self._timer_duration = meter.create_histogram(
            name="shardmigrate.timer.duration",
            unit="s",
            description="Named migration timers in seconds",
        )

    @contextmanager
    def measure(self, name: str) -> Generator[None, None, None]:
        attributes = {"shard": self._shard, "step": name}
        start = time.perf_counter()
        try:
            yield
        except BaseException:
            self._step_failures.add(1, attributes)
            raise
        finally:
            self._step_duration.record(time.perf_counter() - start, attributes)

    def timer(self, name: str, seconds: float) -> None:
        self._timer_duration.record(seconds, {"shard": self._shard, "timer": name})


@dataclass(frozen=True)
class MetricRecord:
    """
    One recorded metric.

    Attributes:
        kind: "measure" or "timer".
        name: Metric name.
        seconds: Recorded duration.
        success: False when a measured block raised.
    """

    kind: str
    name: str
    seconds: float
    success: bool = True


@dataclass
class InMemoryMetricsRecorder:
    """
    Metrics recorder that keeps every record, in order.

    Example:
        >>> recorder = InMemoryMetricsRecorder()
        >>> with recorder.measure("CutoverLock"):
        ...     pass
        >>> recorder.names
        ['CutoverLock']
    """

    records: list[MetricRecord] = field(default_factory=list)

    @contextmanager
    def measure(self, name: str) -> Generator[None, None, None]:
        start = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            self.records.append(
                MetricRecord("measure", name, time.perf_counter() - start, success=success)
            )

    def timer(self, name: str, seconds: float) -> None:
        self.records.append(MetricRecord("timer", name, seconds))

    @property
    def names(self) -> list[str]:
        return [record.name for record in self.records]

    def durations(self, name: str) -> list[float]:
        return [record.seconds for record in self.records if record.name == name]

    def snapshot(self) -> dict[str, Any]:
        """Summarize records as name -> list of durations."""
        result: dict[str, Any] = {}
        for record in self.records:
            result.setdefault(record.name, []).append(record.seconds)
        return result

    def clear(self) -> None:
        self.records.clear()


__all__ = [
    "VERIFY_BEFORE_CUTOVER",
    "CUTOVER_LOCK",
    "DELTA_COPY_JOINED_TABLES",
    "VERIFY_CUTOVER",
    "CUTOVER_UNLOCK",
    "CUTOVER_TIME",
    "OpenTelemetryMetricsRecorder",
    "MetricRecord",
    "InMemoryMetricsRecorder",
]
