"""
Virtual users.

A :class:`VirtualUser` is one daemon thread with its own HTTP session,
random generator and iteration counter.  It loops: pick a scenario from
the weighted table, run it end-to-end, record the iteration, repeat,
until the run stops or the scheduler retires it.  Retirement and stop
are only honoured *between* iterations; an iteration in progress always
finishes unless the run is force-stopped.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Any

from stampede.http import HttpClient
from stampede.metrics import ITERATION_DURATION, ITERATIONS, MetricRecorder
from stampede.scenario import IterationResult, IterationState, ScenarioTable, StepRunner

logger = logging.getLogger(__name__)


class VirtualUser:
    """
    One simulated client executing scenario iterations in a loop.

    Args:
        vu_id: 1-based id, also the ``vu`` tag of its requests.
        table: Weighted scenario table shared (read-only) by all VUs.
        data: Frozen setup context.
        recorder: Shared metric recorder.
        base_url: Target root URL.
        timeout: Per-request timeout in seconds.
        stopping: Run-wide event; once set no new iteration starts.
        halt: Run-wide force-stop event.
        seed: Run seed; combined with *vu_id* so every VU draws a
            distinct but reproducible sequence.
    """

    def __init__(
        self,
        vu_id: int,
        table: ScenarioTable,
        data: Any,
        recorder: MetricRecorder,
        base_url: str,
        timeout: float,
        stopping: threading.Event,
        halt: threading.Event,
        seed: int | None = None,
    ):
        self.id = vu_id
        self.table = table
        self.data = data
        self.recorder = recorder
        self.stopping = stopping
        self.halt = halt
        self.retiring = threading.Event()
        self.iterations = 0
        self.rng = random.Random(f"{seed}:{vu_id}") if seed is not None else random.Random()
        self.client = HttpClient(base_url, recorder, timeout, tags={"vu": str(vu_id)})
        self.runner = StepRunner(self.client, recorder, self.rng, halt)
        self._thread = threading.Thread(target=self._loop, name=f"vu-{vu_id}", daemon=True)

    def __repr__(self) -> str:
        return f"<VirtualUser {self.id} iterations={self.iterations}>"

    def start(self) -> None:
        self._thread.start()

    def retire(self) -> None:
        """Ask the VU to exit after its current iteration."""
        self.retiring.set()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def may_start_iteration(self) -> bool:
        return not (self.stopping.is_set() or self.retiring.is_set() or self.halt.is_set())

    def force_stop(self) -> bool:
        """Cancel the in-flight request, if any; see :meth:`HttpClient.cancel_in_flight`."""
        return self.client.cancel_in_flight()

    def run_iteration(self) -> IterationResult:
        """Pick a scenario, run it once and record the iteration."""
        scenario = self.table.choose(self.rng)
        state = IterationState(
            vu=self.id,
            scenario=scenario.name,
            data=self.data,
            rng=self.rng,
            iteration=self.iterations,
        )
        started = time.perf_counter()
        result = self.runner.run(scenario, state)
        self.iterations += 1

        if not result.halted:
            tags = {"scenario": scenario.name, "phase": "main"}
            self.recorder.record(ITERATION_DURATION, (time.perf_counter() - started) * 1000.0, tags)
            self.recorder.record(ITERATIONS, 1, tags)
        return result

    def _loop(self) -> None:
        logger.debug("VU %s started", self.id)
        try:
            while self.may_start_iteration():
                self.run_iteration()
        finally:
            self.client.close()
            logger.debug("VU %s exited after %s iterations", self.id, self.iterations)
