"""MQTT client port and adapters.

Provides MqttPort (Protocol) and three implementations:

- MqttClient — real aiomqtt-based MQTT v5 client with reconnection
- MockMqttClient — test double that records calls
- NullMqttClient — silent no-op adapter

Design decisions:

- aiomqtt imported lazily inside MqttClient so Mock/Null work without
  aiomqtt installed
- MQTT v5 throughout: inbound ``ResponseTopic`` / ``CorrelationData``
  properties become a CorrelationContext, and outbound publishes can
  carry ``CorrelationData`` back to the requester
- Subscriptions tracked internally and restored on reconnect
- Every inbound message is handled in its own task, so a one-second
  pulse never stalls the receive loop or other actuators
- "Connected" is logged once per client instance; reconnects log at
  DEBUG to keep flapping links from flooding the log
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from gate_remote._commands import CorrelationContext
from gate_remote._errors import TransportError
from gate_remote._settings import MqttSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A message delivered by the broker, decoded to text."""

    topic: str
    payload: str
    correlation: CorrelationContext = field(default_factory=CorrelationContext)


@dataclass(frozen=True, slots=True)
class PublishedMessage:
    """A publish recorded by :class:`MockMqttClient`."""

    topic: str
    payload: str
    retain: bool = False
    qos: int = 1
    correlation_data: bytes | None = None


MessageCallback = Callable[[InboundMessage], Awaitable[None]]
"""Async callback receiving each inbound message."""

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Port contract for MQTT publish/subscribe.

    Implementations must tolerate concurrent ``publish`` calls: the
    command handler (acknowledgments) and the liveness reporter
    (heartbeats) share one connection.
    """

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
        correlation_data: bytes | None = None,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters with a connection lifecycle managed by the app."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Adapters that deliver inbound messages to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Silent no-op MQTT adapter, used when MQTT is disabled."""

    async def publish(
        self,
        topic: str,
        payload: str,  # noqa: ARG002
        *,
        retain: bool = False,  # noqa: ARG002
        qos: int = 1,  # noqa: ARG002
        correlation_data: bytes | None = None,  # noqa: ARG002
    ) -> None:
        """Silently discard a publish request."""
        logger.debug("NullMqttClient.publish(%s) — discarded", topic)

    async def subscribe(self, topic: str) -> None:
        """Silently discard a subscribe request."""
        logger.debug("NullMqttClient.subscribe(%s) — discarded", topic)


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Records publishes and subscriptions for assertion.  Supports
    callback registration and simulated message delivery via
    ``deliver()``.  Setting ``publish_error`` makes every publish raise
    it, to exercise fire-and-forget paths.
    """

    published: list[PublishedMessage] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    publish_error: Exception | None = None
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
        correlation_data: bytes | None = None,
    ) -> None:
        """Record a publish call."""
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append(
            PublishedMessage(topic, payload, retain, qos, correlation_data),
        )

    async def subscribe(self, topic: str) -> None:
        """Record a subscribe call."""
        self.subscriptions.append(topic)

    # -- Test helpers -------------------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        """Register an inbound-message callback."""
        self._callbacks.append(callback)

    async def deliver(
        self,
        topic: str,
        payload: str,
        *,
        response_topic: str | None = None,
        correlation_data: bytes | None = None,
    ) -> None:
        """Simulate an inbound message by invoking all callbacks."""
        message = InboundMessage(
            topic=topic,
            payload=payload,
            correlation=CorrelationContext(response_topic, correlation_data),
        )
        for cb in self._callbacks:
            await cb(message)

    @property
    def publish_count(self) -> int:
        """Number of recorded publishes."""
        return len(self.published)

    def get_messages_for(self, topic: str) -> list[PublishedMessage]:
        """Return recorded publishes to *topic*."""
        return [m for m in self.published if m.topic == topic]

    def reset(self) -> None:
        """Clear all recorded data and callbacks."""
        self.published.clear()
        self.subscriptions.clear()
        self._callbacks.clear()
        self.publish_error = None


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


def _decode_properties(message: Any) -> CorrelationContext:
    props = getattr(message, "properties", None)
    if props is None:
        return CorrelationContext()
    response_topic = getattr(props, "ResponseTopic", None) or None
    correlation_data = getattr(props, "CorrelationData", None)
    if correlation_data is not None:
        correlation_data = bytes(correlation_data)
    return CorrelationContext(response_topic, correlation_data)


@dataclass
class MqttClient:
    """Production MQTT v5 adapter backed by *aiomqtt*.

    Uses a background task that maintains a persistent connection with
    automatic reconnection (exponential backoff with jitter).
    """

    settings: MqttSettings
    drain_timeout: float = 5.0

    # internal state --------------------------------------------------------
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _subscriptions: set[str] = field(
        default_factory=set,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _handler_tasks: set[asyncio.Task[None]] = field(
        default_factory=set,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)
    _connection_logged: bool = field(default=False, init=False, repr=False)

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
        correlation_data: bytes | None = None,
    ) -> None:
        """Publish a message to the broker.

        Raises:
            TransportError: If the client is not connected or the
                publish fails.
        """
        client = self._client
        if client is None:
            msg = "MqttClient is not connected"
            raise TransportError(msg)

        properties = None
        if correlation_data is not None:
            from paho.mqtt.packettypes import PacketTypes  # noqa: PLC0415
            from paho.mqtt.properties import Properties  # noqa: PLC0415

            properties = Properties(PacketTypes.PUBLISH)
            properties.CorrelationData = correlation_data

        try:
            await client.publish(
                topic,
                payload,
                qos=qos,
                retain=retain,
                properties=properties,
            )
        except Exception as exc:
            msg = f"publish to {topic} failed: {exc}"
            raise TransportError(msg) from exc
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topic: str) -> None:
        """Subscribe to *topic*.

        The subscription is tracked internally so it can be restored
        after a reconnection.
        """
        self._subscriptions.add(topic)
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    # -- Callback registration ---------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        """Register a callback for inbound messages."""
        self._callbacks.append(callback)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient.start() called while already running")
            return
        self._stopping = False
        self._listen_task = asyncio.create_task(self._connection_loop())

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait until the first connection is up; ``False`` on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        """Drain in-flight handlers, then stop the connection loop.

        Idempotent — safe to call multiple times.
        """
        self._stopping = True
        if self._handler_tasks:
            _done, pending = await asyncio.wait(
                set(self._handler_tasks),
                timeout=self.drain_timeout,
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    @property
    def is_connected(self) -> bool:
        """Whether the client is currently connected to the broker."""
        return self._connected.is_set()

    # -- Internal -----------------------------------------------------------

    def _tls_context(self) -> ssl.SSLContext | None:
        if not self.settings.tls:
            return None
        context = ssl.create_default_context()
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        return context

    def _log_connected(self) -> None:
        if not self._connection_logged:
            logger.info(
                "MQTT connected to %s:%d",
                self.settings.host,
                self.settings.port,
            )
            self._connection_logged = True
        else:
            logger.debug("MQTT reconnected to %s", self.settings.host)

    async def _connection_loop(self) -> None:
        """Maintain a persistent connection with auto-reconnect."""
        try:
            import aiomqtt  # noqa: PLC0415
            from paho.mqtt.packettypes import PacketTypes  # noqa: PLC0415
            from paho.mqtt.properties import Properties  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        delay = self.settings.reconnect_interval
        while not self._stopping:
            try:
                password: str | None = None
                if self.settings.password is not None:
                    password = self.settings.password.get_secret_value()

                connect_properties = Properties(PacketTypes.CONNECT)
                connect_properties.SessionExpiryInterval = self.settings.session_expiry

                async with aiomqtt.Client(
                    hostname=self.settings.host,
                    port=self.settings.port,
                    username=self.settings.username,
                    password=password,
                    identifier=self.settings.client_id or None,
                    protocol=aiomqtt.ProtocolVersion.V5,
                    keepalive=self.settings.keepalive,
                    tls_context=self._tls_context(),
                    transport=self.settings.transport,
                    websocket_path=self.settings.websocket_path,
                    properties=connect_properties,
                ) as client:
                    self._client = client
                    try:
                        for topic in list(self._subscriptions):
                            await client.subscribe(topic, qos=self.settings.qos)

                        self._connected.set()
                        self._log_connected()
                        delay = self.settings.reconnect_interval

                        async for message in client.messages:
                            self._spawn(message)
                    finally:
                        self._connected.clear()
                        self._client = None

            except asyncio.CancelledError:
                raise
            except Exception as exc:
                wait = delay * random.uniform(0.5, 1.0)  # noqa: S311
                logger.warning(
                    "MQTT connection error (%s), reconnecting in %.1fs",
                    exc,
                    wait,
                )
                await asyncio.sleep(wait)
                delay = min(delay * 2, self.settings.reconnect_max_interval)

    def _spawn(self, message: Any) -> None:
        task = asyncio.create_task(self._dispatch(message))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    async def _dispatch(self, message: Any) -> None:
        """Decode and fan-out an inbound message to callbacks."""
        topic = str(message.topic)

        if message.payload is None:
            logger.debug("Skipping message with None payload on %s", topic)
            return

        payload = (
            message.payload.decode("utf-8", errors="replace")
            if isinstance(message.payload, (bytes, bytearray))
            else str(message.payload)
        )
        inbound = InboundMessage(
            topic=topic,
            payload=payload,
            correlation=_decode_properties(message),
        )

        for cb in self._callbacks:
            try:
                await cb(inbound)
            except Exception:
                logger.exception("Error in message callback for %s", topic)
