"""Actuator port and adapters.

Provides ActuatorPort (Protocol) and two implementations:

- GpioActuator — gpiozero-backed output pins on a Raspberry Pi
- MockActuator — in-memory adapter that logs and records transitions

The backend is chosen by configuration (``GATE_GPIO__BACKEND``), so a
development machine runs the same code path as the device with the
mock in place of the pins.

Design decisions:

- gpiozero imported lazily inside GpioActuator.__init__() so the mock
  works on hosts without GPIO support
- Each actuator identity is bound 1:1 to one pin for the process
  lifetime; there is no registration after startup
- Adapters raise ActuationError for any hardware-level failure
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from gate_remote._errors import ActuationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


class ActuatorId(enum.StrEnum):
    """The four fixed gate actuators."""

    FULL = "full"
    PEDESTRIAN = "pedestrian"
    RIGHT = "right"
    LEFT = "left"


class Level(enum.IntEnum):
    """Logical output level of an actuator's control line."""

    LOW = 0
    HIGH = 1


DEFAULT_PINS: dict[ActuatorId, int] = {
    ActuatorId.FULL: 17,
    ActuatorId.PEDESTRIAN: 4,
    ActuatorId.RIGHT: 27,
    ActuatorId.LEFT: 22,
}
"""BCM pin numbers of the reference wiring (header pins 11, 7, 13, 15)."""

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class ActuatorPort(Protocol):
    """Port contract for driving actuator control lines."""

    def set_level(self, actuator: ActuatorId, level: Level) -> None:
        """Drive *actuator* to *level*.

        Raises:
            ActuationError: If the hardware rejects the transition.
        """
        ...

    def close(self) -> None:
        """Release the underlying hardware resources."""
        ...


# ---------------------------------------------------------------------------
# Hardware adapter
# ---------------------------------------------------------------------------


class GpioActuator:
    """Production adapter backed by gpiozero ``DigitalOutputDevice``.

    Every pin is claimed as an active-high output starting LOW.

    Raises:
        ActuationError: If gpiozero is missing or a pin cannot be claimed.
    """

    def __init__(self, pins: Mapping[ActuatorId, int] | None = None) -> None:
        try:
            from gpiozero import DigitalOutputDevice  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "gpiozero is required to use GpioActuator"
            raise ActuationError(msg) from exc

        resolved = dict(DEFAULT_PINS if pins is None else pins)
        missing = set(ActuatorId) - set(resolved)
        if missing:
            msg = f"no pin configured for: {', '.join(sorted(missing))}"
            raise ActuationError(msg)

        self._devices: dict[ActuatorId, Any] = {}
        try:
            for actuator, pin in resolved.items():
                self._devices[actuator] = DigitalOutputDevice(
                    pin,
                    active_high=True,
                    initial_value=False,
                )
        except Exception as exc:
            self.close()
            msg = f"failed to initialise GPIO pins: {exc}"
            raise ActuationError(msg) from exc

        logger.info(
            "GPIO actuators ready: %s",
            ", ".join(f"{a}=GPIO{p}" for a, p in resolved.items()),
        )

    def set_level(self, actuator: ActuatorId, level: Level) -> None:
        device = self._devices[actuator]
        try:
            if level is Level.HIGH:
                device.on()
            else:
                device.off()
        except Exception as exc:
            msg = f"failed to set {actuator} {level.name}: {exc}"
            raise ActuationError(msg) from exc

    def close(self) -> None:
        for actuator, device in list(self._devices.items()):
            try:
                device.close()
            except Exception:
                logger.warning("Failed to release pin for %s", actuator, exc_info=True)
        self._devices.clear()


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transition:
    """A recorded level change on a :class:`MockActuator`."""

    actuator: ActuatorId
    level: Level
    at: float


@dataclass
class MockActuator:
    """In-memory actuator that logs and records every transition.

    Used on development hosts (``GATE_GPIO__BACKEND=mock``) and as a
    test double.  ``fail_next()`` makes upcoming transitions raise
    :class:`ActuationError` to exercise failure paths.
    """

    transitions: list[Transition] = field(default_factory=list)
    levels: dict[ActuatorId, Level] = field(
        default_factory=lambda: dict.fromkeys(ActuatorId, Level.LOW),
    )
    closed: bool = False
    _failures: dict[tuple[ActuatorId, Level], int] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )

    def set_level(self, actuator: ActuatorId, level: Level) -> None:
        key = (actuator, level)
        remaining = self._failures.get(key, 0)
        if remaining:
            self._failures[key] = remaining - 1
            msg = f"simulated failure setting {actuator} {level.name}"
            raise ActuationError(msg)
        self.levels[actuator] = level
        self.transitions.append(Transition(actuator, level, time.monotonic()))
        logger.info("Mock: %s -> %s", actuator, level.name)

    def close(self) -> None:
        self.closed = True

    # -- Test helpers -------------------------------------------------------

    def fail_next(self, actuator: ActuatorId, level: Level, times: int = 1) -> None:
        """Make the next *times* transitions of *actuator* to *level* fail."""
        self._failures[(actuator, level)] = times

    def transitions_for(self, actuator: ActuatorId) -> list[Transition]:
        """Return recorded transitions of *actuator* in order."""
        return [t for t in self.transitions if t.actuator == actuator]

    def pulses(self, actuator: ActuatorId) -> list[tuple[float, float]]:
        """Return ``(high_at, low_at)`` intervals for *actuator*.

        Only completed HIGH→LOW pairs are reported.
        """
        intervals: list[tuple[float, float]] = []
        high_at: float | None = None
        for t in self.transitions_for(actuator):
            if t.level is Level.HIGH:
                high_at = t.at
            elif high_at is not None:
                intervals.append((high_at, t.at))
                high_at = None
        return intervals

    def reset(self) -> None:
        """Clear recorded transitions and pending failures."""
        self.transitions.clear()
        self._failures.clear()
