"""
Data model for load runs.

This module defines the plain value objects the engine passes around:
the run profile (:class:`RunConfig` and its :class:`Stage` list), the
scenario building blocks (:class:`Scenario` and the three step kinds)
and the per-request :class:`RequestOutcome` consumed by the metric
recorder.  Everything here is immutable once constructed; the only
mutable shared state of a run lives in :mod:`stampede.metrics`.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from stampede.exceptions import ConfigError

if TYPE_CHECKING:
    from stampede.thresholds import ThresholdRule


class MetricType(str, Enum):
    """How samples of a metric stream are aggregated."""

    TREND = "trend"
    RATE = "rate"
    COUNTER = "counter"
    GAUGE = "gauge"


class StepKind(str, Enum):
    """Enumeration of the step types a scenario may contain."""

    HTTP_CALL = "http_call"
    THINK = "think"
    EXTRACT = "extract"


# -----------------------------------------------------------------------------
# Run profile
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Stage:
    """
    One segment of a ramp profile.

    Attributes:
        duration_s: Length of the segment in seconds.
        target: VU count reached at the end of the segment.
    """

    duration_s: float
    target: int

    def __post_init__(self) -> None:
        if self.duration_s <= 0:
            raise ConfigError(f"Stage duration must be > 0, got {self.duration_s}")
        if self.target < 0:
            raise ConfigError(f"Stage target must be >= 0, got {self.target}")


@dataclass(frozen=True)
class RunConfig:
    """
    Load profile and pass/fail rules of a run.

    Either ``stages`` or ``vus`` + ``duration_s`` describe the profile;
    when ``stages`` is non-empty it takes precedence.

    Attributes:
        vus: Constant VU count for fixed mode.
        duration_s: Length of a fixed-mode run in seconds.
        stages: Ordered ramp segments for staged mode.
        start_vus: VU count the first stage ramps from.
        thresholds: Metric key (optionally with a ``{tag:value}``
            selector) mapped to its rules.
        graceful_stop_s: Seconds to wait for in-flight iterations at the
            end of the run; ``None`` defers to the engine settings.
        seed: Seed for scenario selection and think-time jitter.
    """

    vus: int = 1
    duration_s: float | None = None
    stages: tuple[Stage, ...] = ()
    start_vus: int = 0
    thresholds: Mapping[str, tuple[ThresholdRule, ...]] = field(default_factory=dict)
    graceful_stop_s: float | None = None
    seed: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "stages", tuple(self.stages))
        if self.vus < 0:
            raise ConfigError(f"vus must be >= 0, got {self.vus}")
        if self.start_vus < 0:
            raise ConfigError(f"start_vus must be >= 0, got {self.start_vus}")
        if not self.stages and (self.duration_s is None or self.duration_s <= 0):
            raise ConfigError("A run needs either stages or a positive duration")
        if self.graceful_stop_s is not None and self.graceful_stop_s < 0:
            raise ConfigError("graceful_stop_s must be >= 0")

    @property
    def is_staged(self) -> bool:
        return bool(self.stages)

    @property
    def total_duration_s(self) -> float:
        """Sum of stage durations (staged) or the fixed duration."""
        if self.stages:
            return sum(stage.duration_s for stage in self.stages)
        return float(self.duration_s or 0.0)

    @property
    def max_vus(self) -> int:
        """Highest VU count the profile ever asks for."""
        if self.stages:
            return max([self.start_vus] + [stage.target for stage in self.stages])
        return self.vus


# -----------------------------------------------------------------------------
# Scenario building blocks
# -----------------------------------------------------------------------------

Guard = Union[str, Callable[..., bool], None]
Check = Callable[..., bool]


@dataclass(frozen=True)
class HttpCall:
    """
    Send one HTTP request and run named checks on the response.

    Attributes:
        name: Step name; becomes the ``name`` tag of every metric sample.
        method: HTTP method.
        url: URL template, relative to the base URL or absolute.
            Placeholders are filled from iteration variables, setup data
            (``{data[key]}``) and ``{vu}``.
        body: JSON body; string leaves are templates, or a callable
            receiving the :class:`~stampede.scenario.IterationState`.
        headers: Extra request headers.
        params: Query-string parameters; values are templates.
        checks: Check name mapped to a predicate over the response.
        expected_statuses: Statuses that do *not* count toward
            ``http_req_failed``.
        fatal: End the iteration if the request fails or any check fails.
        guard: Variable name that must be present, or a predicate over
            the iteration state; the step is skipped when it is false.
    """

    name: str
    method: str
    url: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    checks: Mapping[str, Check] = field(default_factory=dict)
    expected_statuses: Collection[int] = range(200, 400)
    fatal: bool = False
    guard: Guard = None

    kind = StepKind.HTTP_CALL

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())


@dataclass(frozen=True)
class Think:
    """
    Pause the VU to simulate user think time.

    Attributes:
        seconds: Fixed delay, or a ``(low, high)`` pair for a uniform
            random delay drawn from the VU's own generator.
        guard: Optional skip condition, as for :class:`HttpCall`.
    """

    seconds: float | tuple[float, float]
    guard: Guard = None

    kind = StepKind.THINK

    def __post_init__(self) -> None:
        if isinstance(self.seconds, tuple):
            low, high = self.seconds
            if low < 0 or high < low:
                raise ConfigError(f"Invalid think range: {self.seconds}")
        elif self.seconds < 0:
            raise ConfigError(f"Think time must be >= 0, got {self.seconds}")


@dataclass(frozen=True)
class Extract:
    """
    Copy a field of the last JSON response into an iteration variable.

    Attributes:
        var: Name of the iteration variable to set.
        path: Dotted path into the body, e.g. ``"pr.assigned_reviewers.0"``.
        default: Value stored when the path is absent.
        guard: Optional skip condition, as for :class:`HttpCall`.
    """

    var: str
    path: str
    default: Any = None
    guard: Guard = None

    kind = StepKind.EXTRACT


Step = Union[HttpCall, Think, Extract]


@dataclass(frozen=True)
class Scenario:
    """
    A named, weighted, ordered sequence of steps.

    Attributes:
        name: Unique scenario name; becomes the ``scenario`` tag.
        steps: Steps executed in order on every iteration.
        weight: Relative selection weight (need not sum to 1).
        prepare: Optional callable run at the start of every iteration;
            the mapping it returns seeds the iteration variables (fresh
            ids, a random author picked from the setup data, ...).
    """

    name: str
    steps: tuple[Step, ...]
    weight: float = 1.0
    prepare: Callable[..., Mapping[str, Any]] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.name:
            raise ConfigError("Scenario name must not be empty")
        if self.weight <= 0:
            raise ConfigError(f"Scenario {self.name!r} weight must be > 0, got {self.weight}")


# -----------------------------------------------------------------------------
# Request outcomes
# -----------------------------------------------------------------------------

NETWORK_ERROR_STATUS = 0


@dataclass(frozen=True)
class RequestOutcome:
    """
    Result of one HTTP call, consumed immediately by the metric recorder.

    Attributes:
        status: HTTP status, or ``0`` for a network error or timeout.
        latency_ms: Wall time from send to full response, in milliseconds.
        failed: Whether the call counts toward ``http_req_failed``.
        error: Transport error description, if any.
        timestamp: Epoch seconds at which the call completed.
        tags: Tags attached to every sample derived from this outcome.
    """

    status: int
    latency_ms: float
    failed: bool
    error: str | None = None
    timestamp: float = field(default_factory=time.time)
    tags: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_network_error(self) -> bool:
        return self.status == NETWORK_ERROR_STATUS
