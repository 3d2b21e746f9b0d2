"""MQTT binding of the command dispatcher.

Listens on the control topic for ``{"action": "<name>"}`` payloads.
For each message:

1. decode the payload (malformed payloads are reported and dropped),
2. dispatch the command (unknown actions become a failed result),
3. acknowledge to the MQTT v5 response topic, with the request's
   correlation data, when the sender asked for a reply.  Without a
   response topic the result is only logged.

Failed pulses are additionally reported on the error topic.
"""

from __future__ import annotations

import logging

from gate_remote._commands import PulseResult, decode_command
from gate_remote._dispatcher import CommandDispatcher
from gate_remote._errors import (
    ActuationError,
    DecodeError,
    ErrorPublisher,
    UnknownActionError,
)
from gate_remote._liveness import LivenessReporter
from gate_remote._mqtt import InboundMessage

logger = logging.getLogger(__name__)


class MqttCommandHandler:
    """Turns control-topic messages into pulses and acknowledgments."""

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        liveness: LivenessReporter,
        errors: ErrorPublisher,
        *,
        control_topic: str = "gate/control",
    ) -> None:
        self._dispatcher = dispatcher
        self._liveness = liveness
        self._errors = errors
        self._control_topic = control_topic

    @property
    def control_topic(self) -> str:
        return self._control_topic

    async def __call__(self, message: InboundMessage) -> None:
        if message.topic != self._control_topic:
            logger.debug("Ignoring message on %s", message.topic)
            return

        logger.info("Received command on %s: %s", message.topic, message.payload)
        try:
            command = decode_command(message.payload)
        except UnknownActionError as exc:
            result = PulseResult(action=exc.action, success=False, error=str(exc))
            await self._errors.publish(exc)
        except DecodeError as exc:
            logger.warning("Dropping undecodable command: %s", exc)
            await self._errors.publish(exc)
            return
        else:
            result = await self._dispatcher.dispatch(command, message.correlation)
            if not result.success:
                await self._errors.publish(
                    ActuationError(result.error or "pulse failed"),
                    device=result.action,
                )

        logger.info("Command %s finished: %s", result.action, result.status)
        await self._liveness.publish_acknowledgment(message.correlation, result)
