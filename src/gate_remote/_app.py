"""Application orchestrator for the gate controller.

:class:`GateApp` is the composition root.  It loads settings, builds
the actuator backend and controller, wires the HTTP and MQTT bindings
around a shared :class:`~gate_remote._dispatcher.CommandDispatcher`,
and runs until SIGTERM/SIGINT.

Typical usage::

    from gate_remote import GateApp

    GateApp().run()

Whatever happens after the controller is built, every actuator is
driven LOW before :meth:`GateApp.run` returns.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid
from importlib.metadata import PackageNotFoundError, version

from gate_remote._actuator import ActuatorPort, GpioActuator, MockActuator
from gate_remote._auth import RequestAuthenticator, SeenSignatureCache
from gate_remote._clock import ClockPort, SystemClock
from gate_remote._controller import ActuationController
from gate_remote._dispatcher import CommandDispatcher
from gate_remote._errors import ErrorPublisher
from gate_remote._http import HttpServer, build_http_app
from gate_remote._liveness import LivenessReporter
from gate_remote._logging import configure_logging
from gate_remote._mqtt import (
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
)
from gate_remote._mqtt_handler import MqttCommandHandler
from gate_remote._settings import GateSettings

logger = logging.getLogger(__name__)

APP_NAME = "gate-remote"
CONNECT_TIMEOUT = 10.0


def package_version() -> str:
    """Return the installed distribution version."""
    try:
        return version(APP_NAME)
    except PackageNotFoundError:
        # Source checkout without installed metadata
        return "0.0.0+unknown"


class GateApp:
    """Composition root wiring settings, hardware and transports.

    Args:
        name: Service name used in logs and generated client IDs.
        version: Version reported in logs.  Defaults to the installed
            package version.
        settings_class: Settings class to instantiate at startup.
    """

    def __init__(
        self,
        *,
        name: str = APP_NAME,
        version: str | None = None,
        settings_class: type[GateSettings] = GateSettings,
    ) -> None:
        self._name = name
        self._version = version if version is not None else package_version()
        self._settings_class = settings_class

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    # --- Lifecycle ---------------------------------------------------------

    def run(
        self,
        *,
        settings: GateSettings | None = None,
        mqtt: MqttPort | None = None,
        actuator: ActuatorPort | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        """Start the service (blocking, synchronous entrypoint).

        All parameters are optional and intended for programmatic or
        test use; production runs call ``run()`` with no arguments.
        """
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(
                self._run_async(
                    settings=settings,
                    mqtt=mqtt,
                    actuator=actuator,
                    shutdown_event=shutdown_event,
                    clock=clock,
                ),
            )

    async def _run_async(
        self,
        *,
        settings: GateSettings | None = None,
        mqtt: MqttPort | None = None,
        actuator: ActuatorPort | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        """Async orchestration.

        Orchestration order:

        1. Settings, logging (with secret redaction), startup validation.
        2. Actuator backend and controller (all lines driven LOW).
        3. MQTT binding and heartbeat, then the HTTP API.
        4. Block until shutdown, then tear down in reverse and drive
           every actuator LOW.

        Raises:
            ConfigurationError: If a required credential is missing.
            ActuationError: If the actuators cannot be initialised.
        """
        # --- Phase 1: Bootstrap ---
        resolved = settings if settings is not None else self._settings_class()
        configure_logging(
            resolved.logging,
            service=self._name,
            version=self._version,
            secrets=resolved.secret_values(),
        )
        resolved.validate_startup()
        resolved_clock = clock if clock is not None else SystemClock()

        # --- Phase 2: Hardware ---
        backend = actuator if actuator is not None else self._create_actuator(resolved)
        controller = ActuationController(
            backend,
            pulse_duration=resolved.gpio.pulse_duration,
            release_attempts=resolved.gpio.release_attempts,
        )

        try:
            dispatcher = CommandDispatcher(controller)
            shutdown_event = self._install_signal_handlers(shutdown_event)

            # --- Phase 3: Transports ---
            liveness: LivenessReporter | None = None
            mqtt_port: MqttPort | None = None
            http_server: HttpServer | None = None
            try:
                if mqtt is not None or resolved.mqtt.enabled:
                    mqtt_port = self._create_mqtt(mqtt, resolved)
                    liveness = await self._start_mqtt(
                        mqtt_port,
                        resolved,
                        dispatcher,
                        resolved_clock,
                    )
                if resolved.http.enabled:
                    http_server = await self._start_http(resolved, dispatcher, resolved_clock)

                logger.info("%s v%s ready", self._name, self._version)
                await shutdown_event.wait()
                logger.info("Shutdown requested")
            finally:
                # --- Phase 4: Tear down ---
                if liveness is not None:
                    await liveness.stop()
                if http_server is not None:
                    await http_server.stop()
                if isinstance(mqtt_port, MqttLifecycle):
                    await mqtt_port.stop()
        finally:
            await controller.shutdown()

        logger.info("Shutdown complete")

    # --- _run_async helpers ------------------------------------------------

    @staticmethod
    def _create_actuator(settings: GateSettings) -> ActuatorPort:
        if settings.gpio.backend == "mock":
            logger.warning("Using mock actuators; no pins will be driven")
            return MockActuator()
        return GpioActuator(settings.gpio.pins)

    def _create_mqtt(self, mqtt: MqttPort | None, settings: GateSettings) -> MqttPort:
        """Create the MQTT client, or return the injected one.

        When no explicit ``client_id`` is configured, generates one
        from the app name and a short random suffix.
        """
        if mqtt is not None:
            return mqtt
        mqtt_settings = settings.mqtt
        if not mqtt_settings.client_id:
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": f"{self._name}-{uuid.uuid4().hex[:8]}"},
            )
        return MqttClient(settings=mqtt_settings)

    @staticmethod
    async def _start_mqtt(
        mqtt: MqttPort,
        settings: GateSettings,
        dispatcher: CommandDispatcher,
        clock: ClockPort,
    ) -> LivenessReporter:
        """Subscribe the command handler and start heartbeats."""
        liveness = LivenessReporter(
            mqtt=mqtt,
            clock=clock,
            status_topic=settings.mqtt.status_topic,
            interval=settings.mqtt.heartbeat_interval,
            qos=settings.mqtt.qos,
        )
        errors = ErrorPublisher(mqtt=mqtt, topic=settings.mqtt.error_topic, clock=clock.now)
        handler = MqttCommandHandler(
            dispatcher,
            liveness,
            errors,
            control_topic=settings.mqtt.control_topic,
        )

        await mqtt.subscribe(handler.control_topic)
        if isinstance(mqtt, MqttMessageHandler):
            mqtt.on_message(handler)
        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()
        if isinstance(mqtt, MqttClient) and not await mqtt.wait_connected(CONNECT_TIMEOUT):
            logger.warning("MQTT broker not reachable yet; retrying in the background")

        await liveness.publish_heartbeat()
        liveness.start()
        return liveness

    @staticmethod
    async def _start_http(
        settings: GateSettings,
        dispatcher: CommandDispatcher,
        clock: ClockPort,
    ) -> HttpServer:
        secret = settings.api_secret.get_secret_value() if settings.api_secret else None
        api_key = settings.api_key.get_secret_value() if settings.api_key else None
        authenticator = RequestAuthenticator(
            secret=secret,
            api_key=api_key,
            clock=clock,
            replay_cache=SeenSignatureCache() if settings.replay_protection else None,
        )
        app = build_http_app(dispatcher, authenticator, auth_mode=settings.auth_mode)
        server = HttpServer(app, settings.http.host, settings.http.port)
        await server.start()
        return server

    @staticmethod
    def _install_signal_handlers(shutdown_event: asyncio.Event | None) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers. Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event
