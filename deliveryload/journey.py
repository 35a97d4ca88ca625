"""
Journey orchestrator.

A :class:`Journey` is an ordered list of :class:`Step` objects run for
one actor.  Rules:

- A step's action returns a :class:`~deliveryload.models.StepOutcome`
  (a bare ``bool``, ``dict`` or ``None`` is accepted and coerced).
- **Critical** step fails: the journey stops at once and the result
  names that step.
- **Optional** step fails: noted in the step event, the journey goes on
  and its success is unaffected.
- A successful outcome with ``halt=True`` ends the journey early *as a
  success* (e.g. a vendor with no orders to process).
- ``StepFailure`` and ``TransportFailure`` raised inside a step count
  as that step's failure.  Any other exception is caught at the
  journey boundary and turned into a failed result; nothing escapes to
  the scheduler from a well-formed journey.
- After each step except the last, the orchestrator sleeps a random
  think time drawn from the step's range and multiplied by the session's
  scale.

The orchestrator never prints.  It fires ``step_completed`` and
``journey_completed`` events and records the journey's success and
duration in the aggregator.

Key Concepts Demonstrated:
- Exception boundary converting errors into result data
- Cooperative waiting through an injectable sleep (``gevent.sleep``)
- Step data threaded through a per-journey session
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Union

import gevent

from deliveryload import kpis
from deliveryload.auth import AuthClient
from deliveryload.data import think_time
from deliveryload.events import RunEvents
from deliveryload.exceptions import StepFailure
from deliveryload.http_client import ApiClient
from deliveryload.models import ActorKind, JourneyResult, StepOutcome, VirtualUserContext

logger = logging.getLogger(__name__)

StepResult = Union[StepOutcome, bool, dict, None]


@dataclass(frozen=True)
class Step:
    """
    One named action of a journey.

    Attributes:
        name: Step name reported in failures and events.
        action: ``action(session) -> StepOutcome``.
        critical: Whether a failure aborts the journey.
        think_time: ``(min, max)`` seconds to pause after the step.
    """

    name: str
    action: Callable[[JourneySession], StepResult]
    critical: bool = True
    think_time: tuple[float, float] = (0.0, 0.0)


class JourneySession:
    """
    Everything one journey run needs, owned by a single greenlet.

    Args:
        api: The actor's API client.
        auth: Login/refresh helper bound to *api*.
        context: The virtual user running the journey.
        events: Run events to fire; optional.
        think_time_scale: Multiplier for every pause (``0`` disables them).
        sleep: Cooperative sleep, ``gevent.sleep`` by default.
        rng: Random source for choices and pauses.
    """

    def __init__(
        self,
        api: ApiClient,
        *,
        auth: AuthClient | None = None,
        context: VirtualUserContext | None = None,
        events: RunEvents | None = None,
        think_time_scale: float = 1.0,
        sleep: Callable[[float], Any] = gevent.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.api = api
        self.auth = auth
        self.context = context or VirtualUserContext(id=0, slot=api.slot or 0, started_at=time.monotonic())
        self.events = events if events is not None else api.events
        self.think_time_scale = think_time_scale
        self.rng = rng or random.Random()
        self.data: dict[str, Any] = {}
        self._sleep = sleep

    @property
    def actor_kind(self) -> ActorKind:
        return self.api.actor_kind

    def pause(self, bounds: tuple[float, float]) -> float:
        """Sleep a random think time within *bounds*; returns the seconds slept."""
        seconds = think_time(bounds, self.think_time_scale, self.rng)
        if seconds > 0:
            self._sleep(seconds)
        return seconds


def _coerce(value: StepResult) -> StepOutcome:
    if isinstance(value, StepOutcome):
        return value
    if value is None:
        return StepOutcome.ok()
    if isinstance(value, bool):
        return StepOutcome(value, error=None if value else "Step returned False")
    if isinstance(value, dict):
        return StepOutcome.ok(**value)
    raise TypeError(f"Step returned unsupported value {value!r}")


class Journey:
    """
    An ordered, named sequence of steps for one actor kind.

    Args:
        actor_kind: Kind of actor the journey simulates.
        steps: Steps in execution order.
        name: Display name; defaults to ``"<kind> journey"``.
    """

    def __init__(self, actor_kind: ActorKind, steps: list[Step], *, name: str | None = None) -> None:
        if not steps:
            raise ValueError("A journey needs at least one step")
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names in journey: {names}")
        self.actor_kind = actor_kind
        self.steps = tuple(steps)
        self.name = name or f"{actor_kind.value} journey"

    def run(self, session: JourneySession) -> JourneyResult:
        """
        Run every step in order and return the journey's result.

        Never raises for step errors; see the module docstring for the
        failure rules.
        """
        started = time.perf_counter()
        result = self._run_steps(session, started)
        kpis.record_journey(session.api.aggregator, result)
        if session.events is not None:
            session.events.journey_completed.fire(context=session.context, result=result)
        return result

    def _run_steps(self, session: JourneySession, started: float) -> JourneyResult:
        steps_run = 0
        last_index = len(self.steps) - 1

        for index, step in enumerate(self.steps):
            session.context.current_step = step.name
            step_started = time.perf_counter()
            try:
                outcome = _coerce(step.action(session))
            except StepFailure as exc:
                outcome = StepOutcome.failed(str(exc))
            except Exception as exc:
                steps_run += 1
                logger.debug("Step '%s' raised unexpectedly", step.name, exc_info=True)
                self._fire_step(session, step, StepOutcome.failed(repr(exc)), step_started)
                return self._result(
                    session, started, success=False, step=step.name, error=f"{type(exc).__name__}: {exc}",
                    steps_run=steps_run,
                )
            steps_run += 1
            self._fire_step(session, step, outcome, step_started)

            if outcome.success or not step.critical:
                # Data from optional failures is still useful to later steps.
                session.data.update(outcome.data)

            if not outcome.success and step.critical:
                return self._result(
                    session, started, success=False, step=step.name,
                    error=outcome.error or f"Step '{step.name}' failed", steps_run=steps_run,
                )
            if outcome.success and outcome.halt:
                return self._result(
                    session, started, success=True, step=step.name, message=outcome.message,
                    steps_run=steps_run,
                )
            if index < last_index:
                session.pause(step.think_time)

        return self._result(session, started, success=True, steps_run=steps_run)

    def _fire_step(self, session: JourneySession, step: Step, outcome: StepOutcome, step_started: float) -> None:
        if session.events is None:
            return
        session.events.step_completed.fire(
            context=session.context,
            actor_kind=self.actor_kind,
            step=step.name,
            critical=step.critical,
            outcome=outcome,
            duration_ms=(time.perf_counter() - step_started) * 1000.0,
        )

    def _result(self, session: JourneySession, started: float, **fields: Any) -> JourneyResult:
        session.context.current_step = None
        return JourneyResult(
            duration_ms=(time.perf_counter() - started) * 1000.0,
            actor_kind=self.actor_kind,
            **fields,
        )
