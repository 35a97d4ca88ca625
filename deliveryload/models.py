"""
Core value types shared by the scheduler, journeys and metrics.

Key Concepts Demonstrated:
- ``Enum`` with string values so actor kinds serialise cleanly
- Frozen dataclasses for results that must not change once returned
- A small mutable context object owned by exactly one greenlet
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ActorKind(str, Enum):
    """The three kinds of simulated actor."""

    CUSTOMER = "customer"
    VENDOR = "vendor"
    RIDER = "rider"

    @classmethod
    def parse(cls, value: str | ActorKind) -> ActorKind:
        """Return the member for *value*, accepting either a member or its string."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            choices = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown actor kind '{value}' (expected one of: {choices})") from exc


@dataclass
class VirtualUserContext:
    """
    One simulated actor instance running one journey.

    Created by the scheduler on admission and retired when its journey
    returns.  Only the greenlet running the journey mutates it.

    Attributes:
        id: Unique, monotonically increasing admission number.
        slot: Credential slot; the lowest free integer at admission,
            handed back when the context retires.
        started_at: Scheduler clock reading at admission.
        actor_kind: Chosen at the start of the iteration.
        current_step: Name of the journey step currently running.
    """

    id: int
    slot: int
    started_at: float
    actor_kind: ActorKind | None = None
    current_step: str | None = None


@dataclass(frozen=True)
class StepOutcome:
    """
    Result of a single journey step.

    Attributes:
        success: Whether the step achieved its purpose.
        data: Values later steps may read (selected vendor, order id, ...).
        error: Human-readable failure detail.
        halt: End the journey early *successfully* after this step.
        message: Informational note, e.g. why the journey halted.
    """

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    halt: bool = False
    message: str | None = None

    @classmethod
    def ok(cls, **data: Any) -> StepOutcome:
        return cls(True, data=data)

    @classmethod
    def failed(cls, error: str, **data: Any) -> StepOutcome:
        return cls(False, data=data, error=error)

    @classmethod
    def finished(cls, message: str, **data: Any) -> StepOutcome:
        """A successful outcome that also ends the journey."""
        return cls(True, data=data, halt=True, message=message)


@dataclass(frozen=True)
class JourneyResult:
    """
    Outcome of one complete journey run.

    Attributes:
        success: ``False`` when a critical step failed or the journey
            raised.
        duration_ms: Wall-clock duration including think time.
        actor_kind: Kind of actor that ran the journey.
        step: Failing step name, or the halting step for early exits.
        error: Failure detail when ``success`` is ``False``.
        message: Informational note for early, successful exits.
        steps_run: Number of steps that actually executed.
        completed_at: UTC timestamp at which the journey ended.
    """

    success: bool
    duration_ms: float
    actor_kind: ActorKind
    step: str | None = None
    error: str | None = None
    message: str | None = None
    steps_run: int = 0
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "duration_ms": round(self.duration_ms, 2),
            "actor_kind": self.actor_kind.value,
            "step": self.step,
            "error": self.error,
            "message": self.message,
            "steps_run": self.steps_run,
            "completed_at": self.completed_at.isoformat(),
        }
