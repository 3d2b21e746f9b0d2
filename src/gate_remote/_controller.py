"""Actuation controller: serialized, timed pulses per actuator.

Each actuator identity owns its own :class:`asyncio.Lock`.  Pulses on
different actuators run concurrently; two pulses on the same actuator
never overlap.  Waiters block without a timeout because a pulse is
short and bounded (hold duration plus release retries).

A pulse is HIGH → hold → LOW.  The HIGH/LOW pair is a scoped resource:
the LOW transition runs on every exit path, including a failed HIGH
transition, and is retried before the failure is surfaced.  An actuator
must never stay engaged longer than the intended pulse.

Once started, a pulse always runs to completion even if the request
that triggered it goes away.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from gate_remote._actuator import ActuatorId, ActuatorPort, Level
from gate_remote._commands import PulseResult
from gate_remote._errors import ActuationError

logger = logging.getLogger(__name__)

DEFAULT_PULSE_DURATION = 1.0


class ActuationController:
    """Owns the actuators and serializes pulses on each of them.

    Args:
        actuator: Backend driving the control lines.
        pulse_duration: Seconds each pulse holds the line HIGH.
        release_attempts: How many times to try the LOW transition
            before reporting the actuator as possibly engaged.
        release_retry_delay: Seconds between release attempts.

    Raises:
        ActuationError: If any actuator cannot be driven LOW at startup.
    """

    def __init__(
        self,
        actuator: ActuatorPort,
        *,
        pulse_duration: float = DEFAULT_PULSE_DURATION,
        release_attempts: int = 3,
        release_retry_delay: float = 0.05,
    ) -> None:
        if release_attempts < 1:
            msg = "release_attempts must be at least 1"
            raise ValueError(msg)
        self._actuator = actuator
        self._pulse_duration = pulse_duration
        self._release_attempts = release_attempts
        self._release_retry_delay = release_retry_delay
        self._locks: dict[ActuatorId, asyncio.Lock] = {a: asyncio.Lock() for a in ActuatorId}
        self._inflight: set[asyncio.Task[PulseResult]] = set()
        self._closed = False

        for actuator_id in ActuatorId:
            try:
                self._set(actuator_id, Level.LOW)
            except ActuationError as exc:
                msg = f"failed to initialise {actuator_id}: {exc}"
                raise ActuationError(msg) from exc

    @property
    def pulse_duration(self) -> float:
        return self._pulse_duration

    def is_busy(self, actuator: ActuatorId) -> bool:
        """Whether a pulse currently holds *actuator*."""
        return self._locks[actuator].locked()

    # -- Pulses -------------------------------------------------------------

    async def pulse(self, actuator: ActuatorId) -> PulseResult:
        """Pulse *actuator* HIGH for the configured duration.

        Waits for any in-flight pulse on the same actuator first.
        Hardware failures are reported in the returned result, never
        raised.  Cancelling the caller does not cancel the pulse.
        """
        if self._closed:
            return PulseResult(
                action=actuator.value,
                success=False,
                error="controller is shut down",
            )
        task = asyncio.ensure_future(self._run_pulse(actuator))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _run_pulse(self, actuator: ActuatorId) -> PulseResult:
        async with self._locks[actuator]:
            logger.info("Pulsing %s for %.3fs", actuator, self._pulse_duration)
            try:
                async with self._engaged(actuator):
                    await asyncio.sleep(self._pulse_duration)
            except ActuationError as exc:
                logger.error("Pulse on %s failed: %s", actuator, exc)
                return PulseResult(action=actuator.value, success=False, error=str(exc))
        logger.debug("Pulse on %s complete", actuator)
        return PulseResult(action=actuator.value, success=True)

    @contextlib.asynccontextmanager
    async def _engaged(self, actuator: ActuatorId) -> AsyncIterator[None]:
        try:
            self._set(actuator, Level.HIGH)
        except ActuationError as engage_error:
            try:
                await self._release(actuator)
            except ActuationError as release_error:
                msg = f"{engage_error}; {release_error}"
                raise ActuationError(msg) from engage_error
            raise
        try:
            yield
        finally:
            await self._release(actuator)

    async def _release(self, actuator: ActuatorId) -> None:
        last_error: ActuationError | None = None
        for attempt in range(1, self._release_attempts + 1):
            try:
                self._set(actuator, Level.LOW)
            except ActuationError as exc:
                last_error = exc
                logger.warning(
                    "Release of %s failed (attempt %d/%d): %s",
                    actuator,
                    attempt,
                    self._release_attempts,
                    exc,
                )
                if attempt < self._release_attempts:
                    await asyncio.sleep(self._release_retry_delay)
                continue
            if attempt > 1:
                logger.info("Released %s after %d attempts", actuator, attempt)
            return

        msg = f"{actuator} may be left engaged: {last_error}"
        raise ActuationError(msg) from last_error

    def _set(self, actuator: ActuatorId, level: Level) -> None:
        try:
            self._actuator.set_level(actuator, level)
        except ActuationError:
            raise
        except Exception as exc:
            msg = f"failed to set {actuator} {level.name}: {exc}"
            raise ActuationError(msg) from exc

    # -- Lifecycle ----------------------------------------------------------

    async def shutdown(self) -> None:
        """Drive every actuator LOW and release the backend.

        Lets in-flight pulses finish first.  Per-actuator failures are
        logged, never raised.  Idempotent.
        """
        if self._closed:
            return
        self._closed = True

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        for actuator in ActuatorId:
            try:
                self._set(actuator, Level.LOW)
            except ActuationError:
                logger.exception("Failed to drive %s LOW during shutdown", actuator)

        try:
            self._actuator.close()
        except Exception:
            logger.exception("Failed to close actuator backend")
        logger.info("All actuators driven LOW")
