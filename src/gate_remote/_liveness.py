"""Liveness reporting: periodic heartbeats and correlated acknowledgments.

Topic layout::

    gate/status         ← heartbeat, every 60 s
    <response topic>    ← acknowledgment for a command that asked for one

Heartbeat payload::

    {"hb": "2024-01-01T12:00:00Z"}

Acknowledgment payload (carries the request's correlation data)::

    {"status": "success", "action": "pedestrian"}
    {"status": "failed", "action": "full", "error": "..."}

Publication behaviour:

- **Not retained** — a heartbeat proves the process is alive *now*.
- **QoS 1** — at-least-once delivery.
- **Fire-and-forget** — publication failures are logged, never retried,
  never propagated.

The periodic loop sleeps first, then publishes, and re-checks its stop
event before every publish: once :meth:`LivenessReporter.stop` has been
called no further heartbeat goes out.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field

from gate_remote._clock import ClockPort
from gate_remote._commands import CorrelationContext, PulseResult
from gate_remote._mqtt import MqttPort
from gate_remote._signing import format_timestamp

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 60.0


@dataclass(frozen=True, slots=True)
class HeartbeatMessage:
    """A single heartbeat, regenerated on every tick."""

    hb: str

    def to_json(self) -> str:
        return json.dumps({"hb": self.hb})


@dataclass
class LivenessReporter:
    """Publishes heartbeats and acknowledgments over MQTT.

    Parameters
    ----------
    mqtt:
        MQTT port used for publishing (shared with the command handler).
    clock:
        Wall clock stamping each heartbeat.
    status_topic:
        Heartbeat topic, ``gate/status`` by default.
    interval:
        Seconds between heartbeats.
    qos:
        QoS level for heartbeats and acknowledgments.
    """

    mqtt: MqttPort
    clock: ClockPort
    status_topic: str = "gate/status"
    interval: float = DEFAULT_HEARTBEAT_INTERVAL
    qos: int = 1
    _stop: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    # -- One-shot publications ---------------------------------------------

    async def publish_heartbeat(self) -> None:
        """Publish ``{"hb": <now>}`` to the status topic."""
        message = HeartbeatMessage(hb=format_timestamp(self.clock.now()))
        logger.debug("Publishing heartbeat to %s", self.status_topic)
        await self._safe_publish(self.status_topic, message.to_json())

    async def publish_acknowledgment(
        self,
        correlation: CorrelationContext,
        result: PulseResult,
    ) -> None:
        """Publish *result* to the requester's response topic.

        Does nothing when the request carried no response topic.
        """
        if not correlation.wants_reply:
            logger.debug("No response topic for %s result; dropping", result.action)
            return
        await self._safe_publish(
            correlation.response_topic,
            result.to_json(),
            correlation_data=correlation.correlation_data,
        )

    # -- Periodic loop ------------------------------------------------------

    def start(self) -> None:
        """Start the periodic heartbeat task."""
        if self._task is not None and not self._task.done():
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it.  Idempotent."""
        self._stop.set()
        task, self._task = self._task, None
        if task is not None:
            await task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except TimeoutError:
                pass
            if self._stop.is_set():
                break
            await self.publish_heartbeat()
        logger.debug("Heartbeat loop stopped")

    async def _safe_publish(
        self,
        topic: str,
        payload: str,
        *,
        correlation_data: bytes | None = None,
    ) -> None:
        try:
            await self.mqtt.publish(
                topic,
                payload,
                retain=False,
                qos=self.qos,
                correlation_data=correlation_data,
            )
        except Exception:
            logger.exception("Failed to publish to %s", topic)
