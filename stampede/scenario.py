"""
Scenario selection and step execution.

:class:`ScenarioTable` turns a list of weighted scenarios into a table
of cumulative-weight boundaries with a single dispatch function, so a
60/30/10 workload mix is data rather than ``if``/``else`` branches.

:class:`StepRunner` executes one scenario iteration for a VU: steps run
strictly in order, each HTTP step's checks are recorded, extract steps
feed later steps through :class:`IterationState`, and guards skip steps
without recording anything.

Key Concepts Demonstrated:
- Weighted dispatch with ``bisect`` over cumulative boundaries
  (half-open ``[low, high)`` intervals)
- Advisory checks by default, opt-in fatal steps
- Extraction misses propagated as absent values, not errors
"""

from __future__ import annotations

import bisect
import itertools
import logging
import random
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from stampede.exceptions import ConfigError, IterationAborted
from stampede.http import HttpClient, StepResponse
from stampede.metrics import MetricRecorder
from stampede.models import Extract, Guard, HttpCall, Scenario, Step, StepKind, Think

logger = logging.getLogger(__name__)

_MISSING = object()


def expected_statuses(*codes: int | range) -> frozenset[int]:
    """
    Build an ``expected_statuses`` set from codes and ranges.

    Example:
        ``expected_statuses(range(200, 300), 409)`` treats a 409 as a
        successful request for ``http_req_failed`` purposes.
    """
    statuses: set[int] = set()
    for code in codes:
        if isinstance(code, range):
            statuses.update(code)
        else:
            statuses.add(int(code))
    return frozenset(statuses)


def status_is(*codes: int) -> Callable[[StepResponse], bool]:
    """Check predicate that passes when the response status is one of *codes*."""
    allowed = frozenset(codes)
    return lambda response: response.status in allowed


@dataclass
class IterationState:
    """
    Scenario-local state of one iteration.

    Created fresh for every iteration and discarded at its end, so
    nothing leaks between iterations or between VUs.

    Attributes:
        vu: Id of the VU running the iteration.
        scenario: Name of the scenario being executed.
        data: Frozen setup context shared by every VU (read-only).
        rng: The VU's random generator.
        iteration: Per-VU iteration counter.
        vars: Values produced by ``prepare`` and extract steps.
        last_response: Response of the most recent HTTP step.
    """

    vu: int
    scenario: str
    data: Any
    rng: random.Random
    iteration: int = 0
    vars: dict[str, Any] = field(default_factory=dict)
    last_response: StepResponse | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.vars.get(name, default)

    def template_values(self) -> dict[str, Any]:
        values = {"data": self.data, "vu": self.vu, "iteration": self.iteration}
        values.update(self.vars)
        return values


class ScenarioTable:
    """
    Weighted scenario set with cumulative-weight dispatch.

    Selection probability of each scenario is ``weight / sum(weights)``;
    weights need not sum to 1.
    """

    def __init__(self, scenarios: Iterable[Scenario]):
        self.scenarios: tuple[Scenario, ...] = tuple(scenarios)
        if not self.scenarios:
            raise ConfigError("At least one scenario is required")

        names = [scenario.name for scenario in self.scenarios]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate scenario names: {', '.join(duplicates)}")

        self._boundaries = list(itertools.accumulate(s.weight for s in self.scenarios))
        self.total_weight = self._boundaries[-1]

    def __len__(self) -> int:
        return len(self.scenarios)

    def pick(self, draw: float) -> Scenario:
        """
        Map a uniform draw in ``[0, 1)`` onto a scenario.

        Each scenario owns the half-open slice ``[low, high)`` of the
        cumulative weight line, so a draw landing exactly on a boundary
        belongs to the next scenario.
        """
        point = draw * self.total_weight
        index = bisect.bisect_right(self._boundaries, point)
        return self.scenarios[min(index, len(self.scenarios) - 1)]

    def choose(self, rng: random.Random) -> Scenario:
        if len(self.scenarios) == 1:
            return self.scenarios[0]
        return self.pick(rng.random())

    def probabilities(self) -> dict[str, float]:
        return {s.name: s.weight / self.total_weight for s in self.scenarios}


# -----------------------------------------------------------------------------
# Step execution
# -----------------------------------------------------------------------------

def render(template: Any, values: Mapping[str, Any]) -> Any:
    """Fill ``{placeholders}`` in every string leaf of *template*."""
    if isinstance(template, str):
        return template.format_map(values)
    if isinstance(template, Mapping):
        return {key: render(value, values) for key, value in template.items()}
    if isinstance(template, Sequence) and not isinstance(template, (bytes, bytearray)):
        return [render(value, values) for value in template]
    return template


def guard_allows(guard: Guard, state: IterationState) -> bool:
    """A string guard needs the named variable to be present (not ``None``)."""
    if guard is None:
        return True
    if isinstance(guard, str):
        return state.vars.get(guard) is not None
    return bool(guard(state))


@dataclass
class IterationResult:
    """
    How an iteration ended.

    Attributes:
        completed: Every step ran (guarded-out steps count as run).
        halted: The run was force-stopped mid-iteration.
        aborted: A fatal step or an unexpected error ended it early.
        reason: Why it ended early, if it did.
    """

    completed: bool = True
    halted: bool = False
    aborted: bool = False
    reason: str | None = None


class StepRunner:
    """
    Execute scenario iterations on behalf of one VU.

    Args:
        client: The VU's HTTP client.
        recorder: Shared metric recorder (checks are recorded here).
        rng: The VU's random generator (think-time jitter).
        halt: Event set when the run force-stops; think time waits on
            it so a halted VU wakes immediately.
        phase: Value of the ``phase`` tag on recorded samples.
    """

    def __init__(
        self,
        client: HttpClient,
        recorder: MetricRecorder,
        rng: random.Random,
        halt: threading.Event,
        phase: str = "main",
    ):
        self.client = client
        self.recorder = recorder
        self.rng = rng
        self.halt = halt
        self.phase = phase

    def run(self, scenario: Scenario, state: IterationState) -> IterationResult:
        """
        Run every step of *scenario* in order against *state*.

        Nothing raised by a step escapes: request and check failures are
        recorded, a fatal step or an unexpected error (say, a template
        naming a missing variable) ends only this iteration.
        """
        try:
            if scenario.prepare is not None:
                state.vars.update(scenario.prepare(state))
            for step in scenario.steps:
                if self.halt.is_set():
                    return IterationResult(completed=False, halted=True, reason="halted")
                if not guard_allows(step.guard, state):
                    continue
                self.run_step(step, scenario, state)
        except IterationAborted as exc:
            if self.halt.is_set():
                return IterationResult(completed=False, halted=True, reason=exc.reason)
            logger.debug("VU %s: %s", state.vu, exc)
            return IterationResult(completed=False, aborted=True, reason=exc.reason)
        except Exception as exc:
            logger.exception("VU %s: iteration of %r raised", state.vu, scenario.name)
            return IterationResult(completed=False, aborted=True, reason=f"{type(exc).__name__}: {exc}")
        return IterationResult()

    def run_step(self, step: Step, scenario: Scenario, state: IterationState) -> None:
        if step.kind is StepKind.HTTP_CALL:
            self._http_call(step, scenario, state)
        elif step.kind is StepKind.THINK:
            self._think(step)
        elif step.kind is StepKind.EXTRACT:
            self._extract(step, state)
        else:  # pragma: no cover - exhaustive over StepKind
            raise ConfigError(f"Unsupported step: {step!r}")

    def _http_call(self, step: HttpCall, scenario: Scenario, state: IterationState) -> None:
        values = state.template_values()
        body = step.body(state) if callable(step.body) else render(step.body, values)
        tags = {"scenario": scenario.name, "name": step.name, "phase": self.phase}

        response = self.client.request(
            step.method,
            render(step.url, values),
            json=body,
            params=render(dict(step.params), values) if step.params else None,
            headers=step.headers or None,
            expected_statuses=step.expected_statuses,
            tags=tags,
        )
        state.last_response = response
        if self.halt.is_set() and response.error == "cancelled":
            raise IterationAborted(step.name, "halted")

        failed_checks = []
        for check_name, predicate in step.checks.items():
            try:
                passed = bool(predicate(response))
            except Exception:  # a broken predicate is a failed check
                logger.debug("Check %r raised", check_name, exc_info=True)
                passed = False
            self.recorder.record_check(check_name, passed, tags)
            if not passed:
                failed_checks.append(check_name)

        if step.fatal and (response.failed or failed_checks):
            reason = f"failed checks: {', '.join(failed_checks)}" if failed_checks else (
                response.error or f"unexpected status {response.status}"
            )
            raise IterationAborted(step.name, reason)

    def _think(self, step: Think) -> None:
        if isinstance(step.seconds, tuple):
            low, high = step.seconds
            seconds = self.rng.uniform(low, high)
        else:
            seconds = step.seconds
        if seconds > 0 and self.halt.wait(seconds):
            raise IterationAborted("think", "halted")

    def _extract(self, step: Extract, state: IterationState) -> None:
        response = state.last_response
        value = response.json(step.path, default=_MISSING) if response is not None else _MISSING
        if value is _MISSING:
            logger.debug("VU %s: %s not found for %r", state.vu, step.path, step.var)
            value = step.default
        state.vars[step.var] = value
