"""
Unit tests for the logging subscriber on run events.
"""

from __future__ import annotations

import logging
import random

import gevent
import pytest

from deliveryload.events import attach_logging_listeners
from deliveryload.journey import Journey, JourneySession, Step
from deliveryload.models import ActorKind, StepOutcome
from deliveryload.profiles import RampProfile
from deliveryload.scheduler import LoadScheduler

pytestmark = pytest.mark.unit


def _journey_with_failing_optional_step():
    return Journey(
        ActorKind.CUSTOMER,
        [
            Step("login", lambda s: StepOutcome.ok()),
            Step("browse", lambda s: StepOutcome.ok()),
            Step("track", lambda s: StepOutcome.failed("tracking down"), critical=False),
        ],
    )


@pytest.fixture
def session(make_api, run_events, fake_sleep):
    return JourneySession(make_api(ActorKind.CUSTOMER), events=run_events, sleep=fake_sleep, rng=random.Random(1))


def test_failed_optional_step_is_logged_without_verbose(session, run_events, caplog):
    # Arrange
    attach_logging_listeners(run_events, verbose=False)

    # Act
    with caplog.at_level(logging.INFO, logger="deliveryload.events"):
        result = _journey_with_failing_optional_step().run(session)

    # Assert
    assert result.success
    warnings = [
        record for record in caplog.records
        if record.name == "deliveryload.events" and record.levelno == logging.WARNING
    ]
    assert len(warnings) == 1
    message = warnings[0].getMessage()
    assert "customer optional step 'track' failed: tracking down" in message
    assert "ok (" not in caplog.text


def test_failed_critical_step_and_journey_are_logged(session, run_events, caplog):
    attach_logging_listeners(run_events)
    journey = Journey(ActorKind.CUSTOMER, [Step("login", lambda s: StepOutcome.failed("Invalid credentials"))])

    with caplog.at_level(logging.WARNING, logger="deliveryload.events"):
        journey.run(session)

    messages = [record.getMessage() for record in caplog.records]
    assert any("critical step 'login' failed: Invalid credentials" in message for message in messages)
    assert any("journey failed at step 'login'" in message for message in messages)


def test_verbose_narrates_successful_steps(session, run_events, caplog):
    attach_logging_listeners(run_events, verbose=True)

    with caplog.at_level(logging.INFO, logger="deliveryload.events"):
        _journey_with_failing_optional_step().run(session)

    assert "step 'login' ok (" in caplog.text
    assert "step 'browse' ok (" in caplog.text
    assert "journey completed in" in caplog.text


def test_crashed_iteration_is_logged_once(run_events, caplog):
    # Arrange
    attach_logging_listeners(run_events)

    def _iteration(context):
        gevent.sleep(0.01)
        raise RuntimeError("boom")

    scheduler = LoadScheduler(RampProfile.of((0.05, 1)), _iteration, events=run_events, tick=0.01)

    # Act
    with caplog.at_level(logging.ERROR):
        stats = scheduler.run()

    # Assert
    errors = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert stats.iterations_failed >= 1
    assert len(errors) == stats.iterations_failed
    assert all(record.name == "deliveryload.scheduler" and record.exc_info for record in errors)
