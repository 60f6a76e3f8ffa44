"""
Run orchestration.

:class:`Runner` drives one load run from start to verdict:

1. run ``setup`` once and freeze its result;
2. start the :class:`~stampede.scheduler.Scheduler`;
3. wait for the profile's total duration, re-checking abort-on-fail
   thresholds every control interval;
4. stop the scheduler (graceful stop, then force-stop);
5. evaluate every threshold;
6. run ``teardown`` once and return a :class:`RunResult`.  Teardown
   requests are recorded but come after the verdict, so they cannot
   change it.

The runner holds no process-wide state: the profile, the script and the
engine settings are all passed in, so several runs can coexist in one
process (the test suite relies on this).
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from stampede.config import Settings
from stampede.exceptions import SetupError
from stampede.lifecycle import PhaseClient, run_setup, run_teardown
from stampede.metrics import HTTP_REQS, MetricRecorder
from stampede.models import RunConfig
from stampede.scenario import ScenarioTable
from stampede.scheduler import Scheduler
from stampede.script import Script
from stampede.thresholds import ThresholdEvaluator, ThresholdReport
from stampede.vu import VirtualUser

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    """
    Outcome of a run.

    Attributes:
        report: Per-threshold verdicts (empty when setup failed).
        setup_error: Why setup failed, if it did.
        teardown_error: Why teardown failed, if it did.
        aborted: An abort-on-fail threshold stopped the run early.
        interrupted: :meth:`Runner.stop` ended the run early.
        abort_reason: Description of the early stop.
        duration_s: Wall time of the whole run, setup to verdict.
        cancelled_requests: In-flight requests cancelled at force-stop.
        setup_data: The frozen setup context.
    """

    report: ThresholdReport
    setup_error: str | None = None
    teardown_error: str | None = None
    aborted: bool = False
    interrupted: bool = False
    abort_reason: str | None = None
    duration_s: float = 0.0
    cancelled_requests: int = 0
    setup_data: Any = None

    @property
    def passed(self) -> bool:
        """Setup succeeded, nothing aborted the run, and every threshold held."""
        return self.setup_error is None and not self.aborted and self.report.passed


class Runner:
    """
    Orchestrate setup, the scheduled main phase, teardown and the verdict.

    Args:
        config: Load profile and thresholds.
        script: Scenarios and lifecycle hooks.
        settings: Engine settings; defaults to ``Settings.from_config()``.
        recorder: Metric recorder; a fresh one is created when omitted.
    """

    def __init__(
        self,
        config: RunConfig,
        script: Script,
        settings: Settings | None = None,
        recorder: MetricRecorder | None = None,
    ):
        self.config = config
        self.script = script
        self.settings = settings or Settings.from_config()
        self.recorder = recorder or MetricRecorder()
        self.evaluator = ThresholdEvaluator(config.thresholds, self.settings.no_data_policy)
        self.table = ScenarioTable(script.scenarios)
        self.scheduler: Scheduler | None = None
        self._stop_requested = threading.Event()

    def stop(self) -> None:
        """Ask a running :meth:`run` to wind down early (thread-safe)."""
        self._stop_requested.set()

    def _phase_client(self, phase: str) -> PhaseClient:
        return PhaseClient(
            self.settings.base_url,
            self.recorder,
            self.settings.request_timeout,
            phase=phase,
        )

    def run(self) -> RunResult:
        """Execute the run and return its result; never raises for run failures."""
        started = time.monotonic()
        logger.info(
            "Starting %s against %s (%s scenarios, %.1fs, up to %s VUs)",
            self.script.name,
            self.settings.base_url,
            len(self.table),
            self.config.total_duration_s,
            self.config.max_vus,
        )

        try:
            data = run_setup(self.script.setup, self._phase_client("setup"))
        except SetupError as exc:
            logger.error("Setup failed, main phase skipped: %s", exc)
            return RunResult(
                report=ThresholdReport(),
                setup_error=str(exc),
                duration_s=time.monotonic() - started,
            )

        def build_vu(vu_id: int, stopping: threading.Event, halt: threading.Event) -> VirtualUser:
            return VirtualUser(
                vu_id=vu_id,
                table=self.table,
                data=data,
                recorder=self.recorder,
                base_url=self.settings.base_url,
                timeout=self.settings.request_timeout,
                stopping=stopping,
                halt=halt,
                seed=self.config.seed,
            )

        self.scheduler = Scheduler(
            self.config,
            build_vu,
            self.recorder,
            control_interval=self.settings.control_interval,
        )
        self.scheduler.start()
        aborted, interrupted, reason = self._wait_for_end(self.scheduler)

        graceful_stop = self.config.graceful_stop_s
        if graceful_stop is None:
            graceful_stop = self.settings.graceful_stop
        cancelled = self.scheduler.stop(graceful_stop)

        report = self.evaluator.evaluate(self.recorder)
        teardown_error = run_teardown(self.script.teardown, self._phase_client("teardown"), data)

        result = RunResult(
            report=report,
            teardown_error=teardown_error,
            aborted=aborted,
            interrupted=interrupted,
            abort_reason=reason,
            duration_s=time.monotonic() - started,
            cancelled_requests=cancelled,
            setup_data=data,
        )
        logger.info(
            "Run %s after %.1fs (%s/%s thresholds passed)",
            "passed" if result.passed else "failed",
            result.duration_s,
            len(report.results) - len(report.failures),
            len(report.results),
        )
        return result

    def _wait_for_end(self, scheduler: Scheduler) -> tuple[bool, bool, str | None]:
        """
        Block until the profile's duration elapses or the run is cut short.

        Returns:
            ``(aborted_by_threshold, interrupted, reason)``.
        """
        total = self.config.total_duration_s
        interval = self.settings.control_interval
        while True:
            remaining = total - scheduler.elapsed()
            if remaining <= 0:
                return False, False, None
            if self._stop_requested.wait(min(interval, remaining)):
                logger.warning("Stop requested at %.1fs", scheduler.elapsed())
                return False, True, "stop requested"

            elapsed = scheduler.elapsed()
            triggered = self.evaluator.abort_triggers(self.recorder, elapsed)
            if triggered:
                first = triggered[0]
                reason = (
                    f"threshold {first.rule.key} {first.rule.source} crossed "
                    f"(observed {first.observed:.4g})"
                )
                logger.warning("Aborting at %.1fs: %s", elapsed, reason)
                return True, False, reason

            logger.debug(
                "t=%.1fs vus=%s http_reqs=%s",
                elapsed,
                scheduler.live_count,
                self.recorder.count(HTTP_REQS),
            )
