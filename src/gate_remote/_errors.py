"""Error taxonomy and structured error publication.

Every failure the gate controller can observe maps onto one of the
exception classes below.  The classes decide how a failure surfaces:

- :class:`ConfigurationError` — missing secret or key.  Fatal at
  startup, HTTP 500 at request time.  Never treated as "unauthorized".
- :class:`AuthenticationError` — bad key, bad or stale signature,
  unparsable timestamp.  HTTP 401.
- :class:`DecodeError` — malformed command payload.  Logged and
  dropped on MQTT.
- :class:`UnknownActionError` — well-formed payload naming an action
  that is not one of the four actuators.  Result marked failed.
- :class:`ActuationError` — hardware failure during a pin transition.
  Result marked failed, process keeps serving.
- :class:`TransportError` — publish/subscribe or connection failure.
  Logged; reconnection is left to the MQTT client loop.

Failures are also published as structured JSON to the error topic so an
unattended device can be observed remotely.

Payload schema::

    {
        "error_type": "actuation_error",
        "message": "Human-readable error description",
        "device": "pedestrian" | null,
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {}
    }

Publication behaviour:

- **Not retained** — errors are events, not last-known state.
- **QoS 1** — at-least-once delivery for reliability.
- **Fire-and-forget** — publication failures are logged, never propagated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gate_remote._mqtt import MqttPort

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class GateError(Exception):
    """Base class for all gate-remote errors."""


class ConfigurationError(GateError):
    """A required secret, key or setting is absent or inconsistent."""


class AuthenticationError(GateError):
    """Credentials supplied with a request are missing or invalid."""


class DecodeError(GateError):
    """A command payload could not be decoded."""


class UnknownActionError(GateError):
    """A command named an action with no matching actuator."""

    def __init__(self, action: str) -> None:
        super().__init__(f"unknown action: {action}")
        self.action = action


class ActuationError(GateError):
    """A pin transition failed at the hardware layer."""


class TransportError(GateError):
    """Publishing, subscribing or connecting to the broker failed."""


DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    ConfigurationError: "configuration_error",
    AuthenticationError: "authentication_error",
    DecodeError: "decode_error",
    UnknownActionError: "unknown_action",
    ActuationError: "actuation_error",
    TransportError: "transport_error",
}

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error payload."""

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    Looks up the exact class of the exception; subclasses are not matched.

    Args:
        error: The exception to convert.
        error_type_map: Mapping from exception types to machine-readable
            ``error_type`` strings.  Defaults to
            :data:`DEFAULT_ERROR_TYPES`; unmapped types fall back to
            ``"error"``.
        device: Optional actuator name to include in the payload.
        details: Optional dict of additional context.
        clock: Optional callable returning a :class:`~datetime.datetime`.
            Defaults to ``datetime.now(UTC)``.
    """
    resolved_map = error_type_map if error_type_map is not None else DEFAULT_ERROR_TYPES
    error_type = resolved_map.get(type(error), "error")
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details=details or {},
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorPublisher:
    """Publishes structured error payloads to the error topic.

    Errors during publication are logged but never propagated — a
    failed error *report* must not disturb command handling.

    Args:
        mqtt: MQTT port used for publishing.
        topic: Error topic (``gate/error`` by default).
        error_type_map: Mapping from exception types to type strings.
        clock: Optional callable returning a :class:`~datetime.datetime`
            for deterministic testing.
    """

    mqtt: MqttPort
    topic: str = "gate/error"
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(DEFAULT_ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    async def publish(
        self,
        error: Exception,
        *,
        device: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Build an error payload and publish it, fire-and-forget."""
        try:
            payload = build_error_payload(
                error,
                error_type_map=self.error_type_map,
                device=device,
                details=details,
                clock=self.clock,
            )
            payload_json = payload.to_json()
        except Exception:
            logger.exception(
                "Failed to build error payload for %r (device=%s)",
                error,
                device,
            )
            return

        logger.warning(
            "Publishing error: %s (type=%s, device=%s)",
            payload.message,
            payload.error_type,
            device,
        )
        try:
            await self.mqtt.publish(self.topic, payload_json, retain=False, qos=1)
        except Exception:
            logger.exception("Failed to publish error to %s", self.topic)
