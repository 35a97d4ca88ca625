"""
Structured run events.

The engine never writes narration itself.  Instead the HTTP adapter,
journey orchestrator and scheduler fire events on a :class:`RunEvents`
instance that belongs to one run, and anything that wants to observe
the run (console logging, tests, a Locust bridge) subscribes to them.

Hooks are Locust's :class:`~locust.event.EventHook`, so listeners are
registered with ``add_listener`` and receive keyword arguments only.
A listener that raises is logged by Locust and never breaks the run.

Key Concepts Demonstrated:
- Publish/subscribe instead of hard-coded console writes
- One events object per run (no module-level registry)
- Presentation kept in an optional subscriber
"""

from __future__ import annotations

import logging

from locust.event import EventHook

logger = logging.getLogger(__name__)


class RunEvents:
    """
    Event hooks fired during a load run.

    Attributes:
        request: One HTTP call finished.  Arguments: ``method``,
            ``name``, ``status``, ``duration_ms``, ``success``,
            ``exception``, ``actor_kind``.
        check: A response check was evaluated.  Arguments: ``name``,
            ``passed``, ``actor_kind``.
        step_completed: A journey step returned.  Arguments:
            ``context``, ``actor_kind``, ``step``, ``critical``,
            ``outcome``, ``duration_ms``.
        journey_completed: A journey returned.  Arguments: ``context``,
            ``result``.
        iteration_failed: An iteration raised past the journey
            boundary.  Arguments: ``context``, ``exception``.
        stage_changed: The scheduler entered a new stage.  Arguments:
            ``index``, ``stage``, ``elapsed``.
        state_changed: The scheduler changed state.  Arguments:
            ``state``, ``stage_index``, ``elapsed``.
    """

    def __init__(self) -> None:
        self.request = EventHook()
        self.check = EventHook()
        self.step_completed = EventHook()
        self.journey_completed = EventHook()
        self.iteration_failed = EventHook()
        self.stage_changed = EventHook()
        self.state_changed = EventHook()


def attach_logging_listeners(events: RunEvents, *, verbose: bool = False) -> None:
    """
    Subscribe log-narration listeners to *events*.

    Stage and state changes are logged at ``INFO``; failed journeys and
    failed steps (critical or optional) at ``WARNING``.  Successful steps
    and journeys are only narrated when *verbose* is set.  Crashed
    iterations are logged by the scheduler itself.

    Args:
        events: The run's event hooks.
        verbose: Also log every step and every successful journey at
            ``DEBUG``-worthy detail (emitted at ``INFO``).
    """

    def _on_stage_changed(index, stage, elapsed, **_kwargs):
        logger.info(
            "Stage %d started at %.1fs: target %d VUs for %.0fs",
            index + 1,
            elapsed,
            stage.target,
            stage.duration,
        )

    def _on_state_changed(state, stage_index, elapsed, **_kwargs):
        logger.info("Scheduler %s (stage %s) at %.1fs", state.value, stage_index, elapsed)

    def _on_journey_completed(context, result, **_kwargs):
        if not result.success:
            logger.warning(
                "VU %d %s journey failed at step '%s' after %.0fms: %s",
                context.id,
                result.actor_kind.value,
                result.step,
                result.duration_ms,
                result.error,
            )
        elif verbose:
            logger.info(
                "VU %d %s journey completed in %.0fms",
                context.id,
                result.actor_kind.value,
                result.duration_ms,
            )

    def _on_step_completed(context, actor_kind, step, critical, outcome, duration_ms, **_kwargs):
        if not outcome.success:
            logger.warning(
                "VU %d %s %s step '%s' failed: %s",
                context.id,
                actor_kind.value,
                "critical" if critical else "optional",
                step,
                outcome.error,
            )
        elif verbose:
            logger.info("VU %d %s step '%s' ok (%.0fms)", context.id, actor_kind.value, step, duration_ms)

    events.stage_changed.add_listener(_on_stage_changed)
    events.state_changed.add_listener(_on_state_changed)
    events.journey_completed.add_listener(_on_journey_completed)
    events.step_completed.add_listener(_on_step_completed)
