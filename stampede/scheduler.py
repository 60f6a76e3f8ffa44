"""
VU scheduling.

The :class:`Scheduler` owns the VU population of a run and keeps the
live count converging to the profile's target:

- **Fixed mode**: ``vus`` VUs from t=0 until the duration elapses.
- **Staged mode**: the stages form a piecewise-linear target curve
  starting at ``start_vus``.  A control thread samples the curve every
  ``control_interval`` seconds and spawns or retires the difference.

Retirement is newest-first and never interrupts an iteration: a retired
VU finishes the iteration it is in and then exits.  Shutdown stops new
iterations, waits up to the graceful-stop window for in-flight ones,
then force-stops the stragglers.

Key Concepts Demonstrated:
- Pure ``target_at`` function for deterministic ramp tests
- Background control loop driven by ``Event.wait`` for prompt shutdown
- Bounded graceful stop followed by explicit cancellation
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable

from stampede.metrics import VUS, MetricRecorder
from stampede.models import RunConfig
from stampede.vu import VirtualUser

logger = logging.getLogger(__name__)

# Seconds to wait for a force-stopped VU thread before giving up on it.
FORCE_STOP_JOIN_TIMEOUT = 1.0

VUFactory = Callable[[int, threading.Event, threading.Event], VirtualUser]


def target_at(config: RunConfig, elapsed_s: float) -> int:
    """
    Target VU count *elapsed_s* seconds into the run.

    Staged profiles interpolate linearly between the previous stage's
    target (``start_vus`` for the first stage) and the current stage's
    target, rounding half up.  Past the last stage the final target
    holds.

    Args:
        config: The run profile.
        elapsed_s: Seconds since the main phase started.

    Returns:
        The whole number of VUs that should be active.
    """
    if not config.is_staged:
        return config.vus

    elapsed_s = max(elapsed_s, 0.0)
    previous = config.start_vus
    stage_start = 0.0
    for stage in config.stages:
        stage_end = stage_start + stage.duration_s
        if elapsed_s < stage_end:
            progress = (elapsed_s - stage_start) / stage.duration_s
            return int(math.floor(previous + (stage.target - previous) * progress + 0.5))
        previous = stage.target
        stage_start = stage_end
    return config.stages[-1].target


class Scheduler:
    """
    Spawn and retire VUs to follow the run profile.

    Args:
        config: The run profile.
        vu_factory: Builds a VU given ``(vu_id, stopping, halt)``.
        recorder: Receives a ``vus`` gauge sample on every adjustment.
        control_interval: Seconds between curve samples.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        config: RunConfig,
        vu_factory: VUFactory,
        recorder: MetricRecorder,
        control_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.vu_factory = vu_factory
        self.recorder = recorder
        self.control_interval = control_interval
        self.clock = clock

        self.stopping = threading.Event()
        self.halt = threading.Event()

        self._active: list[VirtualUser] = []
        self._retired: list[VirtualUser] = []
        self._next_id = 1
        self._started_at: float | None = None
        self._lock = threading.Lock()
        self._control_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def live_count(self) -> int:
        """VUs that are active (not retiring)."""
        with self._lock:
            return len(self._active)

    @property
    def spawned_total(self) -> int:
        return self._next_id - 1

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self.clock() - self._started_at

    def all_vus(self) -> list[VirtualUser]:
        with self._lock:
            return list(self._active) + list(self._retired)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the initial population and, for staged runs, start the control loop."""
        self._started_at = self.clock()
        initial = self.adjust(0.0)
        logger.info(
            "Scheduler started: %s mode, %s VUs initially, %.1fs total",
            "staged" if self.config.is_staged else "fixed",
            initial,
            self.config.total_duration_s,
        )
        self._control_thread = threading.Thread(
            target=self._control_loop, name="scheduler-control", daemon=True
        )
        self._control_thread.start()

    def adjust(self, elapsed_s: float) -> int:
        """
        Bring the live VU count to the target at *elapsed_s*.

        Returns:
            The target that was applied.
        """
        target = target_at(self.config, min(elapsed_s, self.config.total_duration_s))
        with self._lock:
            if self.stopping.is_set():
                return len(self._active)
            delta = target - len(self._active)
            if delta > 0:
                self._spawn(delta)
            elif delta < 0:
                self._retire(-delta)
            self._retired = [vu for vu in self._retired if vu.is_alive()]
            live = len(self._active)
        if delta:
            logger.debug("t=%.1fs target=%s (%+d)", elapsed_s, target, delta)
        self.recorder.record(VUS, live)
        return target

    def _spawn(self, count: int) -> None:
        for _ in range(count):
            vu = self.vu_factory(self._next_id, self.stopping, self.halt)
            self._next_id += 1
            self._active.append(vu)
            vu.start()

    def _retire(self, count: int) -> None:
        for _ in range(count):
            vu = self._active.pop()
            vu.retire()
            self._retired.append(vu)

    def _control_loop(self) -> None:
        while not self.stopping.wait(self.control_interval):
            self.adjust(self.elapsed())

    def stop(self, graceful_stop_s: float) -> int:
        """
        Stop the run.

        No new iterations start once this is called.  In-flight
        iterations get up to *graceful_stop_s* seconds to finish; after
        that the halt event wakes sleeping VUs and requests still in
        flight are cancelled and recorded as failures.

        Returns:
            The number of in-flight requests that were cancelled.
        """
        self.stopping.set()
        if self._control_thread is not None:
            self._control_thread.join()

        vus = self.all_vus()
        deadline = self.clock() + graceful_stop_s
        for vu in vus:
            vu.join(max(0.0, deadline - self.clock()))

        stragglers = [vu for vu in vus if vu.is_alive()]
        cancelled = 0
        if stragglers:
            logger.warning(
                "%s VUs still running after %.1fs graceful stop; forcing stop",
                len(stragglers),
                graceful_stop_s,
            )
            self.halt.set()
            cancelled = sum(1 for vu in stragglers if vu.force_stop())
            for vu in stragglers:
                vu.join(FORCE_STOP_JOIN_TIMEOUT)

        with self._lock:
            self._active = []
            # Only threads that ignored the force-stop are still tracked.
            self._retired = [vu for vu in vus if vu.is_alive()]
        self.recorder.record(VUS, 0)
        logger.info(
            "Scheduler stopped: %s VUs spawned, %s requests cancelled",
            self.spawned_total,
            cancelled,
        )
        return cancelled
