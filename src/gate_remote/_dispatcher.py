"""Command dispatcher shared by the HTTP and MQTT bindings."""

from __future__ import annotations

import logging

from gate_remote._commands import Command, CorrelationContext, PulseResult
from gate_remote._controller import ActuationController
from gate_remote._errors import UnknownActionError

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Maps a command onto a controller pulse.

    Stateless apart from the controller it wraps, so a single instance
    serves every transport concurrently.
    """

    def __init__(self, controller: ActuationController) -> None:
        self._controller = controller

    async def dispatch(
        self,
        command: Command | str,
        correlation: CorrelationContext | None = None,
    ) -> PulseResult:
        """Execute *command* and return the controller's result unchanged.

        A bare action name is resolved first; an unknown name yields a
        failed result without touching any actuator.
        """
        if isinstance(command, str):
            try:
                command = Command.from_action(command)
            except UnknownActionError as exc:
                logger.warning("Rejected command: %s", exc)
                return PulseResult(action=exc.action, success=False, error=str(exc))

        logger.info(
            "Dispatching %s (reply to %s)",
            command.action,
            correlation.response_topic if correlation is not None else None,
        )
        return await self._controller.pulse(command.action)
