"""
Staged load scheduler.

Drives virtual-user concurrency through a :class:`RampProfile`.  Each
admitted :class:`~deliveryload.models.VirtualUserContext` runs exactly
one iteration in its own greenlet and is retired when that iteration
returns; the scheduler then re-admits to keep concurrency at the
current stage's target.

State machine::

    IDLE -> RAMPING(i) <-> SUSTAINING(i) -> ... -> DRAINING -> TERMINATED

- Below target: admit new contexts until active == target.
- Above target: admit nothing.  Running contexts are never killed
  while the profile is running; concurrency falls as journeys finish.
- ``RAMPING`` while active != target, ``SUSTAINING`` once they match.
- After the last stage: ``DRAINING``.  Wait up to ``drain_timeout`` for
  in-flight contexts, then ``TERMINATED``.  Contexts still running at
  the drain deadline are killed and counted as abandoned; this is the
  only point where the scheduler ever kills a running context.

Completed iterations post a message on a ``gevent.queue.Queue``; the
scheduler blocks on that queue with a timeout bounded by the next stage
boundary and ``tick``, so it wakes either to re-admit or to switch
stage.

Key Concepts Demonstrated:
- ``gevent.pool.Pool`` sized to the profile's peak target
- Completion messages over a queue instead of polling greenlets
- Slot reuse with a min-heap (lowest free slot first)
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import gevent
from gevent.pool import Pool
from gevent.queue import Empty, Queue

from deliveryload.events import RunEvents
from deliveryload.exceptions import ConfigurationError
from deliveryload.models import VirtualUserContext
from deliveryload.profiles import RampProfile

logger = logging.getLogger(__name__)

IterationFn = Callable[[VirtualUserContext], Any]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RAMPING = "ramping"
    SUSTAINING = "sustaining"
    DRAINING = "draining"
    TERMINATED = "terminated"


@dataclass
class StageStats:
    """Admissions, completions and peak concurrency for one stage."""

    index: int
    target: int
    admitted: int = 0
    completed: int = 0
    peak_active: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "index": self.index,
            "target": self.target,
            "admitted": self.admitted,
            "completed": self.completed,
            "peak_active": self.peak_active,
        }


@dataclass
class SchedulerStats:
    """
    What happened during a scheduler run.

    Attributes:
        stages: One entry per profile stage, in order.
        peak_concurrency: Highest number of simultaneously active
            contexts.
        admitted: Total contexts admitted.
        completed: Total contexts that returned (successfully or not).
        iterations_failed: Iterations that raised past the journey.
        abandoned: Contexts killed at the drain deadline.
        history: ``(state, stage_index, elapsed)`` per state change.
    """

    stages: list[StageStats]
    peak_concurrency: int = 0
    admitted: int = 0
    completed: int = 0
    iterations_failed: int = 0
    abandoned: int = 0
    history: list[tuple[SchedulerState, int | None, float]] = field(default_factory=list)

    @property
    def final_state(self) -> SchedulerState:
        return self.history[-1][0] if self.history else SchedulerState.IDLE

    def states(self) -> list[SchedulerState]:
        return [state for state, _, _ in self.history]

    def to_dict(self) -> dict[str, Any]:
        return {
            "peak_concurrency": self.peak_concurrency,
            "admitted": self.admitted,
            "completed": self.completed,
            "iterations_failed": self.iterations_failed,
            "abandoned": self.abandoned,
            "stages": [stage.to_dict() for stage in self.stages],
            "history": [
                {"state": state.value, "stage": index, "elapsed": round(elapsed, 3)}
                for state, index, elapsed in self.history
            ],
        }


class LoadScheduler:
    """
    Run *iteration* in concurrently admitted contexts following *profile*.

    Args:
        profile: The ramp profile to follow.
        iteration: ``iteration(context)``; called once per admitted
            context inside its own greenlet.  Exceptions are caught,
            logged and counted.
        events: Run events for stage/state changes and crashed
            iterations.
        drain_timeout: Seconds to wait for in-flight contexts after the
            last stage.
        tick: Maximum seconds between admission passes.
        clock: Monotonic clock returning seconds.
    """

    def __init__(
        self,
        profile: RampProfile,
        iteration: IterationFn,
        *,
        events: RunEvents | None = None,
        drain_timeout: float = 30.0,
        tick: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if drain_timeout < 0:
            raise ConfigurationError(f"drain_timeout must not be negative, got {drain_timeout}")
        if tick <= 0:
            raise ConfigurationError(f"tick must be positive, got {tick}")
        self.profile = profile
        self.iteration = iteration
        self.events = events
        self.drain_timeout = drain_timeout
        self.tick = tick
        self.clock = clock

        self.state = SchedulerState.IDLE
        self.stats = SchedulerStats(
            stages=[StageStats(index, stage.target) for index, stage in enumerate(profile.stages)]
        )
        self._pool = Pool(size=max(profile.peak_target, 1))
        self._completions: Queue = Queue()
        self._active: dict[int, tuple[VirtualUserContext, gevent.Greenlet]] = {}
        self._free_slots: list[int] = []
        self._next_slot = 0
        self._ids = itertools.count(1)
        self._stage_index: int | None = None
        self._started = 0.0
        self._stop_requested = False

    @property
    def active_count(self) -> int:
        return len(self._active)

    def stop(self) -> None:
        """Stop admitting and move to draining at the next pass."""
        self._stop_requested = True

    # -----------------------------------------------------------------
    # Main loop
    # -----------------------------------------------------------------

    def run(self) -> SchedulerStats:
        """
        Run the whole profile, drain, and return the statistics.

        Blocks the calling greenlet until ``TERMINATED``.
        """
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError("A LoadScheduler can only run once")
        self._started = self.clock()
        self._record_state(SchedulerState.IDLE, None)

        while not self._stop_requested:
            elapsed = self._elapsed()
            index = self.profile.stage_index_at(elapsed)
            if index is None:
                break
            if index != self._stage_index:
                self._enter_stage(index, elapsed)

            target = self.profile.stages[index].target
            while len(self._active) < target:
                self._admit(index)
            self._set_state(
                SchedulerState.SUSTAINING if len(self._active) == target else SchedulerState.RAMPING
            )

            wait = min(self.tick, self.profile.stage_end(index) - self._elapsed())
            self._wait_for_completion(max(wait, 0.0))

        self._drain()
        self._set_state(SchedulerState.TERMINATED)
        logger.info(
            "Scheduler finished: %d admitted, %d completed, %d failed, %d abandoned, peak %d",
            self.stats.admitted,
            self.stats.completed,
            self.stats.iterations_failed,
            self.stats.abandoned,
            self.stats.peak_concurrency,
        )
        return self.stats

    def _elapsed(self) -> float:
        return self.clock() - self._started

    def _enter_stage(self, index: int, elapsed: float) -> None:
        self._stage_index = index
        if self.events is not None:
            self.events.stage_changed.fire(index=index, stage=self.profile.stages[index], elapsed=elapsed)

    def _record_state(self, state: SchedulerState, stage_index: int | None) -> None:
        elapsed = self._elapsed()
        self.state = state
        self.stats.history.append((state, stage_index, elapsed))
        if self.events is not None:
            self.events.state_changed.fire(state=state, stage_index=stage_index, elapsed=elapsed)

    def _set_state(self, state: SchedulerState) -> None:
        stage_index = None if state in (SchedulerState.DRAINING, SchedulerState.TERMINATED) else self._stage_index
        last_state, last_index, _ = self.stats.history[-1]
        if (last_state, last_index) != (state, stage_index):
            self._record_state(state, stage_index)

    # -----------------------------------------------------------------
    # Admission and retirement
    # -----------------------------------------------------------------

    def _take_slot(self) -> int:
        if self._free_slots:
            return heapq.heappop(self._free_slots)
        slot = self._next_slot
        self._next_slot += 1
        return slot

    def _admit(self, stage_index: int) -> None:
        context = VirtualUserContext(id=next(self._ids), slot=self._take_slot(), started_at=self._elapsed())
        greenlet = self._pool.spawn(self._run_context, context)
        self._active[context.id] = (context, greenlet)

        self.stats.admitted += 1
        stage = self.stats.stages[stage_index]
        stage.admitted += 1
        active = len(self._active)
        stage.peak_active = max(stage.peak_active, active)
        self.stats.peak_concurrency = max(self.stats.peak_concurrency, active)

    def _run_context(self, context: VirtualUserContext) -> None:
        failed = False
        try:
            self.iteration(context)
        except Exception as exc:
            failed = True
            logger.error(
                "Iteration for VU %d (%s) crashed at step %s: %r",
                context.id,
                context.actor_kind.value if context.actor_kind else "unassigned",
                context.current_step,
                exc,
                exc_info=True,
            )
            if self.events is not None:
                self.events.iteration_failed.fire(context=context, exception=exc)
        self._completions.put((context.id, failed))

    def _wait_for_completion(self, timeout: float) -> None:
        """Block up to *timeout* for one completion, then retire every queued one."""
        try:
            self._retire(*self._completions.get(timeout=timeout))
        except Empty:
            return
        while True:
            try:
                self._retire(*self._completions.get_nowait())
            except Empty:
                return

    def _retire(self, context_id: int, failed: bool) -> None:
        entry = self._active.pop(context_id, None)
        if entry is None:
            return
        context, _ = entry
        heapq.heappush(self._free_slots, context.slot)
        self.stats.completed += 1
        if failed:
            self.stats.iterations_failed += 1
        if self._stage_index is not None:
            self.stats.stages[self._stage_index].completed += 1

    # -----------------------------------------------------------------
    # Drain
    # -----------------------------------------------------------------

    def _drain(self) -> None:
        self._set_state(SchedulerState.DRAINING)
        deadline = self.clock() + self.drain_timeout
        while self._active:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            self._wait_for_completion(remaining)

        if self._active:
            self.stats.abandoned = len(self._active)
            logger.warning(
                "Drain timeout of %.1fs reached; abandoning %d in-flight iterations",
                self.drain_timeout,
                self.stats.abandoned,
            )
            gevent.killall([greenlet for _, greenlet in self._active.values()], block=True)
            self._active.clear()
