"""Unit tests for gate_remote._controller — serialized timed pulses.

Test Techniques Used:
    - Concurrency Testing: Overlapping pulse requests on one and on
      several actuators
    - Fault Injection: HIGH/LOW failures via MockActuator.fail_next()
    - State Transition Testing: Startup, busy, shutdown
    - Cancellation Testing: A started pulse survives caller cancellation
"""

from __future__ import annotations

import asyncio
import time

import pytest

from gate_remote._actuator import ActuatorId, Level, MockActuator
from gate_remote._controller import DEFAULT_PULSE_DURATION, ActuationController
from gate_remote._errors import ActuationError

PULSE = 0.05


@pytest.fixture
def controller(mock_actuator: MockActuator) -> ActuationController:
    """Controller with a short pulse and instant release retries."""
    return ActuationController(
        mock_actuator,
        pulse_duration=PULSE,
        release_retry_delay=0,
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestStartup:
    """Tests for controller construction.

    Technique: State Transition Testing.
    """

    def test_default_pulse_is_one_second(self, mock_actuator: MockActuator) -> None:
        """The default hold time is 1000 ms."""
        assert DEFAULT_PULSE_DURATION == 1.0
        assert ActuationController(mock_actuator).pulse_duration == 1.0

    def test_drives_every_actuator_low(self, mock_actuator: MockActuator) -> None:
        """Construction issues a LOW transition on all four lines."""
        ActuationController(mock_actuator)
        assert [(t.actuator, t.level) for t in mock_actuator.transitions] == [
            (a, Level.LOW) for a in ActuatorId
        ]

    def test_init_failure_raises(self, mock_actuator: MockActuator) -> None:
        """A line that cannot be driven LOW aborts startup."""
        mock_actuator.fail_next(ActuatorId.RIGHT, Level.LOW)
        with pytest.raises(ActuationError, match="failed to initialise right"):
            ActuationController(mock_actuator)

    def test_release_attempts_must_be_positive(self, mock_actuator: MockActuator) -> None:
        """Zero attempts would never release anything."""
        with pytest.raises(ValueError, match="release_attempts"):
            ActuationController(mock_actuator, release_attempts=0)


# ---------------------------------------------------------------------------
# Pulses
# ---------------------------------------------------------------------------


class TestPulse:
    """Tests for a single pulse.

    Technique: Specification-based Testing.
    """

    async def test_pulse_goes_high_then_low(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """A pulse is exactly one HIGH followed by one LOW."""
        mock_actuator.reset()
        result = await controller.pulse(ActuatorId.PEDESTRIAN)

        assert result.success
        assert result.action == "pedestrian"
        assert [t.level for t in mock_actuator.transitions] == [Level.HIGH, Level.LOW]
        assert mock_actuator.levels[ActuatorId.PEDESTRIAN] is Level.LOW

    async def test_pulse_holds_for_duration(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """The line stays HIGH for at least the pulse duration."""
        await controller.pulse(ActuatorId.FULL)
        ((high_at, low_at),) = mock_actuator.pulses(ActuatorId.FULL)
        assert low_at - high_at >= PULSE * 0.9

    async def test_only_target_actuator_moves(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """Other actuators see no transitions."""
        mock_actuator.reset()
        await controller.pulse(ActuatorId.LEFT)
        assert {t.actuator for t in mock_actuator.transitions} == {ActuatorId.LEFT}

    async def test_is_busy_while_pulsing(self, controller: ActuationController) -> None:
        """is_busy() is true only during the pulse."""
        task = asyncio.create_task(controller.pulse(ActuatorId.RIGHT))
        await asyncio.sleep(PULSE / 5)
        assert controller.is_busy(ActuatorId.RIGHT)
        assert not controller.is_busy(ActuatorId.LEFT)
        await task
        assert not controller.is_busy(ActuatorId.RIGHT)


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestSerialization:
    """Tests for per-actuator mutual exclusion.

    Technique: Concurrency Testing.
    """

    async def test_same_actuator_pulses_never_overlap(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """Concurrent requests on one actuator run back to back."""
        results = await asyncio.gather(
            *(controller.pulse(ActuatorId.FULL) for _ in range(3)),
        )

        assert all(r.success for r in results)
        intervals = mock_actuator.pulses(ActuatorId.FULL)
        assert len(intervals) == 3
        for (_, prev_low), (next_high, _) in zip(intervals, intervals[1:], strict=False):
            assert next_high >= prev_low
        levels = [t.level for t in mock_actuator.transitions_for(ActuatorId.FULL)]
        assert levels == [Level.LOW] + [Level.HIGH, Level.LOW] * 3

    async def test_different_actuators_run_concurrently(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """Pulses on distinct actuators overlap in time."""
        start = time.monotonic()
        await asyncio.gather(*(controller.pulse(a) for a in ActuatorId))
        elapsed = time.monotonic() - start

        assert elapsed < PULSE * 3
        (left_high, left_low) = mock_actuator.pulses(ActuatorId.LEFT)[0]
        (full_high, full_low) = mock_actuator.pulses(ActuatorId.FULL)[0]
        assert left_high < full_low
        assert full_high < left_low

    async def test_started_pulse_survives_caller_cancellation(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """Cancelling the waiter does not leave the line HIGH."""
        task = asyncio.create_task(controller.pulse(ActuatorId.PEDESTRIAN))
        await asyncio.sleep(PULSE / 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.sleep(PULSE * 2)
        assert mock_actuator.levels[ActuatorId.PEDESTRIAN] is Level.LOW
        assert len(mock_actuator.pulses(ActuatorId.PEDESTRIAN)) == 1


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    """Tests for hardware failures during a pulse.

    Technique: Fault Injection.
    """

    async def test_high_failure_reports_and_still_releases(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """A failed HIGH still issues a LOW and yields a failed result."""
        mock_actuator.reset()
        mock_actuator.fail_next(ActuatorId.FULL, Level.HIGH)

        result = await controller.pulse(ActuatorId.FULL)

        assert not result.success
        assert "simulated failure" in (result.error or "")
        assert [t.level for t in mock_actuator.transitions] == [Level.LOW]

    async def test_release_retried_until_it_succeeds(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """Transient LOW failures are retried; the pulse succeeds."""
        mock_actuator.fail_next(ActuatorId.LEFT, Level.LOW, times=2)

        result = await controller.pulse(ActuatorId.LEFT)

        assert result.success
        assert mock_actuator.levels[ActuatorId.LEFT] is Level.LOW

    async def test_release_exhausted_reports_possibly_engaged(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """When every release attempt fails the result says so."""
        mock_actuator.fail_next(ActuatorId.LEFT, Level.LOW, times=3)

        result = await controller.pulse(ActuatorId.LEFT)

        assert not result.success
        assert "may be left engaged" in (result.error or "")

    async def test_high_and_release_failures_both_reported(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """A failed HIGH followed by a failed release keeps both causes."""
        mock_actuator.fail_next(ActuatorId.FULL, Level.HIGH)
        mock_actuator.fail_next(ActuatorId.FULL, Level.LOW, times=3)

        result = await controller.pulse(ActuatorId.FULL)

        assert not result.success
        error = result.error or ""
        assert "simulated failure setting full HIGH" in error
        assert "may be left engaged" in error

    async def test_failure_does_not_block_next_pulse(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """The lock is released after a failed pulse."""
        mock_actuator.fail_next(ActuatorId.RIGHT, Level.HIGH)
        first = await controller.pulse(ActuatorId.RIGHT)
        second = await controller.pulse(ActuatorId.RIGHT)

        assert not first.success
        assert second.success

    async def test_unexpected_backend_error_wrapped(self) -> None:
        """Non-ActuationError exceptions from a backend are contained."""

        class Flaky(MockActuator):
            def set_level(self, actuator: ActuatorId, level: Level) -> None:
                if level is Level.HIGH:
                    msg = "bus error"
                    raise OSError(msg)
                super().set_level(actuator, level)

        controller = ActuationController(Flaky(), pulse_duration=PULSE)
        result = await controller.pulse(ActuatorId.FULL)

        assert not result.success
        assert "bus error" in (result.error or "")


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    """Tests for controller shutdown.

    Technique: State Transition Testing.
    """

    async def test_shutdown_drives_all_low_and_closes(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """shutdown() leaves every line LOW and closes the backend."""
        await controller.shutdown()
        assert set(mock_actuator.levels.values()) == {Level.LOW}
        assert mock_actuator.closed

    async def test_shutdown_waits_for_inflight_pulse(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """An in-flight pulse completes before the backend closes."""
        task = asyncio.create_task(controller.pulse(ActuatorId.FULL))
        await asyncio.sleep(PULSE / 5)

        await controller.shutdown()

        assert (await task).success
        assert len(mock_actuator.pulses(ActuatorId.FULL)) == 1

    async def test_pulse_after_shutdown_fails(self, controller: ActuationController) -> None:
        """A closed controller refuses new pulses."""
        await controller.shutdown()
        result = await controller.pulse(ActuatorId.FULL)
        assert not result.success
        assert result.error == "controller is shut down"

    async def test_shutdown_is_idempotent(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """A second shutdown() does nothing."""
        await controller.shutdown()
        count = len(mock_actuator.transitions)
        await controller.shutdown()
        assert len(mock_actuator.transitions) == count

    async def test_shutdown_tolerates_low_failure(
        self,
        controller: ActuationController,
        mock_actuator: MockActuator,
    ) -> None:
        """One stuck line does not stop the others being driven LOW."""
        mock_actuator.fail_next(ActuatorId.FULL, Level.LOW)
        before = len(mock_actuator.transitions)

        await controller.shutdown()

        released = {t.actuator for t in mock_actuator.transitions[before:]}
        assert released == {ActuatorId.PEDESTRIAN, ActuatorId.RIGHT, ActuatorId.LEFT}
        assert mock_actuator.closed
