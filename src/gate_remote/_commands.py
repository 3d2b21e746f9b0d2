"""Command, result and correlation value objects.

Inbound MQTT payloads look like ``{"action": "pedestrian"}``.  Decoding
either yields a :class:`Command` naming one of the four actuators or
raises — a ``Command`` for an unknown action is never constructed.

Acknowledgment payload schema::

    {"status": "success", "action": "pedestrian"}
    {"status": "failed", "action": "full", "error": "..."}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Self

from gate_remote._actuator import ActuatorId
from gate_remote._errors import DecodeError, UnknownActionError


@dataclass(frozen=True, slots=True)
class Command:
    """A validated request to pulse one actuator."""

    action: ActuatorId

    @classmethod
    def from_action(cls, action: str) -> Self:
        """Build a command from an action name.

        Raises:
            UnknownActionError: If *action* is not an actuator name.
        """
        try:
            return cls(action=ActuatorId(action))
        except ValueError:
            raise UnknownActionError(action) from None


def decode_command(payload: str | bytes) -> Command:
    """Decode a JSON command payload.

    Raises:
        DecodeError: If the payload is not a JSON object with a string
            ``action`` field.
        UnknownActionError: If the action is not an actuator name.
    """
    try:
        data: Any = json.loads(payload)
    except (ValueError, TypeError) as exc:
        msg = f"invalid JSON: {exc}"
        raise DecodeError(msg) from exc

    if not isinstance(data, dict):
        msg = "command must be a JSON object"
        raise DecodeError(msg)
    action = data.get("action")
    if not isinstance(action, str):
        msg = "command requires a string 'action' field"
        raise DecodeError(msg)
    return Command.from_action(action)


@dataclass(frozen=True, slots=True)
class PulseResult:
    """Outcome of one pulse attempt."""

    action: str
    success: bool
    error: str | None = None

    @property
    def status(self) -> str:
        return "success" if self.success else "failed"

    def to_dict(self) -> dict[str, str]:
        data = {"status": self.status, "action": self.action}
        if self.error is not None:
            data["error"] = self.error
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True, slots=True)
class CorrelationContext:
    """Reply routing carried by an inbound MQTT v5 message.

    HTTP-origin commands have no correlation context; HTTP replies
    synchronously instead.
    """

    response_topic: str | None = None
    correlation_data: bytes | None = None

    @property
    def wants_reply(self) -> bool:
        return bool(self.response_topic)
