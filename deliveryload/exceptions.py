"""
Exception hierarchy for the load harness.

Failures fall into two families with very different propagation rules:

- **Run-level errors** (:class:`ConfigurationError`,
  :class:`ConnectivityError`) stop a run before the scheduler starts
  and surface to the CLI as a non-zero exit code.
- **Iteration-level failures** (:class:`StepFailure`,
  :class:`TransportFailure`, :class:`AssertionFailure`) are caught at
  the journey boundary and turned into :class:`~deliveryload.models.JourneyResult`
  data.  They never reach the scheduler.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


class ConfigurationError(HarnessError, ValueError):
    """Malformed ramp profile, threshold expression or metric reference."""


class ConnectivityError(HarnessError):
    """The target API failed the pre-run health check."""


class StepFailure(HarnessError):
    """
    A scenario step could not complete successfully.

    Attributes:
        step: Name of the step that failed, when known.
    """

    def __init__(self, message: str, *, step: str | None = None) -> None:
        super().__init__(message)
        self.step = step


class TransportFailure(StepFailure):
    """
    A network-level error talking to the target API.

    Treated exactly like a :class:`StepFailure` for the step that
    issued the request.

    Attributes:
        method: HTTP verb of the failed request.
        endpoint: Request name (path template) of the failed request.
        duration_ms: Time spent before the request gave up, when known.
    """

    def __init__(self, message: str, *, method: str, endpoint: str, duration_ms: float | None = None) -> None:
        super().__init__(message)
        self.method = method
        self.endpoint = endpoint
        self.duration_ms = duration_ms


class AssertionFailure(StepFailure):
    """A response check that is the defining success condition of a step."""

    def __init__(self, check_name: str, *, step: str | None = None) -> None:
        super().__init__(f"Check failed: {check_name}", step=step)
        self.check_name = check_name
