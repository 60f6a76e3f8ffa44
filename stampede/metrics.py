"""
Thread-safe metric recording.

Every virtual user appends to the same :class:`MetricRecorder`, so this
is the one concurrency-sensitive structure of a run.  Each
:class:`MetricStream` guards its own sample list with a lock; the
recorder guards only the stream registry, so VUs writing to different
streams never contend.

Samples carry tags (``scenario``, ``name``, ``method``, ``status``,
``check``, ``phase``).  Queries accept a tag selector so a single stream
answers both ``http_req_duration`` and sub-metric questions such as
``http_req_duration{scenario:reassign}``.

Key Concepts Demonstrated:
- Per-stream locking for contention-free concurrent appends
- Exact nearest-rank percentiles over the full sample buffer
- Copy-under-lock reads so queries never observe a half-written list
"""

from __future__ import annotations

import logging
import math
import statistics
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from stampede.models import MetricType, RequestOutcome

logger = logging.getLogger(__name__)

# Built-in stream names.
HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
CHECKS = "checks"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
VUS = "vus"

BUILTIN_METRICS: dict[str, MetricType] = {
    HTTP_REQS: MetricType.COUNTER,
    HTTP_REQ_DURATION: MetricType.TREND,
    HTTP_REQ_FAILED: MetricType.RATE,
    CHECKS: MetricType.RATE,
    ITERATIONS: MetricType.COUNTER,
    ITERATION_DURATION: MetricType.TREND,
    VUS: MetricType.GAUGE,
}


@dataclass(frozen=True)
class Sample:
    """One recorded value with the tags it was recorded under."""

    value: float
    timestamp: float
    tags: Mapping[str, str] = field(default_factory=dict)

    def matches(self, selector: Mapping[str, str] | None) -> bool:
        if not selector:
            return True
        return all(self.tags.get(key) == value for key, value in selector.items())


def percentile(values: list[float], p: float) -> float | None:
    """
    Nearest-rank percentile of *values*.

    Returns the smallest sample such that at least ``p`` percent of the
    samples are less than or equal to it.  The result is always one of
    the recorded values, never an interpolation.

    Args:
        values: Samples in any order.
        p: Percentile in ``[0, 100]``.

    Returns:
        The percentile value, or ``None`` for an empty list.
    """
    if not values:
        return None
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be within [0, 100], got {p}")
    ordered = sorted(values)
    # The epsilon keeps e.g. 0.95 * 20 from rounding up past an exact rank.
    rank = math.ceil(p / 100.0 * len(ordered) - 1e-9)
    return ordered[max(rank, 1) - 1]


class MetricStream:
    """
    Named, append-only sequence of samples.

    Attributes:
        name: Stream name, e.g. ``"http_req_duration"``.
        metric_type: How the samples are aggregated.
    """

    def __init__(self, name: str, metric_type: MetricType):
        self.name = name
        self.metric_type = metric_type
        self._samples: list[Sample] = []
        self._lock = threading.Lock()

    def append(
        self,
        value: float,
        tags: Mapping[str, str] | None = None,
        timestamp: float | None = None,
    ) -> None:
        sample = Sample(
            value=float(value),
            timestamp=time.time() if timestamp is None else timestamp,
            tags=dict(tags or {}),
        )
        with self._lock:
            self._samples.append(sample)

    def samples(self, tags: Mapping[str, str] | None = None) -> list[Sample]:
        """Return a copy of the samples matching the tag selector."""
        with self._lock:
            snapshot = list(self._samples)
        if not tags:
            return snapshot
        return [sample for sample in snapshot if sample.matches(tags)]

    def values(self, tags: Mapping[str, str] | None = None) -> list[float]:
        return [sample.value for sample in self.samples(tags)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def __repr__(self) -> str:
        return f"<MetricStream {self.name} ({self.metric_type.value}) samples={len(self)}>"


class MetricRecorder:
    """
    Registry of metric streams shared by every VU of a run.

    The built-in streams are registered up front; scripts may register
    their own with :meth:`register`.  Recording to an unknown name
    creates a trend stream on the fly.
    """

    def __init__(self) -> None:
        self._streams: dict[str, MetricStream] = {}
        self._lock = threading.Lock()
        for name, metric_type in BUILTIN_METRICS.items():
            self._streams[name] = MetricStream(name, metric_type)

    # ------------------------------------------------------------------
    # Registration and recording
    # ------------------------------------------------------------------

    def register(self, name: str, metric_type: MetricType | str) -> MetricStream:
        """
        Return the stream *name*, creating it with *metric_type* if needed.

        Raises:
            ValueError: If the stream exists with a different type.
        """
        metric_type = MetricType(metric_type)
        with self._lock:
            stream = self._streams.get(name)
            if stream is None:
                stream = MetricStream(name, metric_type)
                self._streams[name] = stream
                logger.debug("Registered metric %s (%s)", name, metric_type.value)
            elif stream.metric_type is not metric_type:
                raise ValueError(
                    f"Metric {name!r} is a {stream.metric_type.value}, not a {metric_type.value}"
                )
        return stream

    def stream(self, name: str) -> MetricStream | None:
        with self._lock:
            return self._streams.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._streams)

    def record(self, name: str, value: float, tags: Mapping[str, str] | None = None) -> None:
        """Append one sample to stream *name*."""
        stream = self.stream(name) or self.register(name, MetricType.TREND)
        stream.append(value, tags)

    def record_outcome(self, outcome: RequestOutcome) -> None:
        """
        Record an HTTP outcome into the three built-in request streams.

        ``http_reqs`` counts it, ``http_req_duration`` receives its
        latency and ``http_req_failed`` receives ``1`` or ``0``.
        """
        tags = dict(outcome.tags)
        tags["status"] = str(outcome.status)
        self._streams[HTTP_REQS].append(1, tags, outcome.timestamp)
        self._streams[HTTP_REQ_DURATION].append(outcome.latency_ms, tags, outcome.timestamp)
        self._streams[HTTP_REQ_FAILED].append(1 if outcome.failed else 0, tags, outcome.timestamp)

    def record_check(self, check_name: str, passed: bool, tags: Mapping[str, str] | None = None) -> None:
        check_tags = dict(tags or {})
        check_tags["check"] = check_name
        self._streams[CHECKS].append(1 if passed else 0, check_tags)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _values(self, name: str, tags: Mapping[str, str] | None) -> list[float]:
        stream = self.stream(name)
        return stream.values(tags) if stream is not None else []

    def count(self, name: str, tags: Mapping[str, str] | None = None) -> int:
        return len(self._values(name, tags))

    def total(self, name: str, tags: Mapping[str, str] | None = None) -> float:
        return sum(self._values(name, tags))

    def percentile(self, name: str, p: float, tags: Mapping[str, str] | None = None) -> float | None:
        return percentile(self._values(name, tags), p)

    def rate(
        self,
        name: str,
        predicate: Callable[[Sample], bool] | None = None,
        tags: Mapping[str, str] | None = None,
    ) -> float | None:
        """
        Fraction of samples that are non-zero (or satisfy *predicate*).

        Returns:
            A value in ``[0, 1]``, or ``None`` when no samples match.
        """
        stream = self.stream(name)
        samples = stream.samples(tags) if stream is not None else []
        if not samples:
            return None
        predicate = predicate or (lambda sample: sample.value != 0)
        hits = sum(1 for sample in samples if predicate(sample))
        return hits / len(samples)

    def aggregate(
        self,
        name: str,
        aggregation: str,
        argument: float | None = None,
        tags: Mapping[str, str] | None = None,
    ) -> float | None:
        """
        Compute one named aggregation; ``None`` means "no samples".

        Supported aggregations: ``p`` (with *argument*), ``avg``, ``min``,
        ``max``, ``med``, ``rate``, ``count`` and ``value`` (last sample).
        """
        if aggregation == "rate":
            return self.rate(name, tags=tags)

        values = self._values(name, tags)
        if aggregation == "count":
            # Counters sum their increments; other streams count samples.
            stream = self.stream(name)
            if stream is not None and stream.metric_type is MetricType.COUNTER:
                return float(sum(values)) if values else None
            return float(len(values)) if values else None
        if not values:
            return None
        if aggregation == "p":
            if argument is None:
                raise ValueError("Percentile aggregation needs an argument")
            return percentile(values, argument)
        if aggregation == "avg":
            return statistics.fmean(values)
        if aggregation == "min":
            return min(values)
        if aggregation == "max":
            return max(values)
        if aggregation == "med":
            return statistics.median(values)
        if aggregation == "value":
            return values[-1]
        raise ValueError(f"Unknown aggregation: {aggregation}")

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """
        Summarise every non-empty stream for the console report.

        Returns:
            Stream name mapped to a dict of aggregate values whose keys
            depend on the stream type.
        """
        summary: dict[str, dict[str, Any]] = {}
        for name in self.names():
            stream = self.stream(name)
            values = stream.values() if stream is not None else []
            if not values:
                continue
            if stream.metric_type is MetricType.TREND:
                summary[name] = {
                    "avg": statistics.fmean(values),
                    "min": min(values),
                    "med": statistics.median(values),
                    "max": max(values),
                    "p(90)": percentile(values, 90),
                    "p(95)": percentile(values, 95),
                    "count": len(values),
                }
            elif stream.metric_type is MetricType.RATE:
                passes = sum(1 for value in values if value)
                summary[name] = {
                    "rate": passes / len(values),
                    "passes": passes,
                    "fails": len(values) - passes,
                }
            elif stream.metric_type is MetricType.COUNTER:
                summary[name] = {"count": sum(values)}
            else:
                summary[name] = {"value": values[-1], "min": min(values), "max": max(values)}
        return summary

    def check_summary(self) -> dict[str, tuple[int, int]]:
        """Check name mapped to ``(passes, fails)``."""
        results: dict[str, list[int]] = {}
        for sample in self._streams[CHECKS].samples():
            name = sample.tags.get("check", "")
            counts = results.setdefault(name, [0, 0])
            counts[0 if sample.value else 1] += 1
        return {name: (passes, fails) for name, (passes, fails) in results.items()}
