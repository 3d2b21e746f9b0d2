"""gate-remote.

Authenticated remote triggering of gate actuators over HTTP and MQTT.
"""

from gate_remote._actuator import (
    DEFAULT_PINS,
    ActuatorId,
    ActuatorPort,
    GpioActuator,
    Level,
    MockActuator,
)
from gate_remote._app import GateApp, package_version
from gate_remote._auth import FRESHNESS_WINDOW, RequestAuthenticator, SeenSignatureCache
from gate_remote._client import GateClient, GateRequestError
from gate_remote._clock import ClockPort, SystemClock
from gate_remote._commands import Command, CorrelationContext, PulseResult, decode_command
from gate_remote._controller import ActuationController
from gate_remote._dispatcher import CommandDispatcher
from gate_remote._errors import (
    ActuationError,
    AuthenticationError,
    ConfigurationError,
    DecodeError,
    ErrorPayload,
    ErrorPublisher,
    GateError,
    TransportError,
    UnknownActionError,
    build_error_payload,
)
from gate_remote._http import HttpServer, build_http_app, require_api_key, require_signature
from gate_remote._liveness import HeartbeatMessage, LivenessReporter
from gate_remote._logging import JsonFormatter, SecretRedactingFilter, configure_logging
from gate_remote._mqtt import (
    InboundMessage,
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    NullMqttClient,
)
from gate_remote._mqtt_handler import MqttCommandHandler
from gate_remote._settings import (
    GateSettings,
    GpioSettings,
    HttpSettings,
    LoggingSettings,
    MqttSettings,
)
from gate_remote._signing import format_timestamp, generate_secret, parse_timestamp, sign, signed_headers

__version__ = package_version()

__all__ = [
    # Version
    "__version__",
    # App
    "GateApp",
    # Actuators
    "DEFAULT_PINS",
    "ActuatorId",
    "ActuatorPort",
    "GpioActuator",
    "Level",
    "MockActuator",
    "ActuationController",
    # Commands
    "Command",
    "CommandDispatcher",
    "CorrelationContext",
    "PulseResult",
    "decode_command",
    # Auth
    "FRESHNESS_WINDOW",
    "RequestAuthenticator",
    "SeenSignatureCache",
    "format_timestamp",
    "generate_secret",
    "parse_timestamp",
    "sign",
    "signed_headers",
    # Transports
    "GateClient",
    "GateRequestError",
    "HttpServer",
    "build_http_app",
    "require_api_key",
    "require_signature",
    "InboundMessage",
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttCommandHandler",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "NullMqttClient",
    # Liveness
    "HeartbeatMessage",
    "LivenessReporter",
    # Clock
    "ClockPort",
    "SystemClock",
    # Errors
    "ActuationError",
    "AuthenticationError",
    "ConfigurationError",
    "DecodeError",
    "ErrorPayload",
    "ErrorPublisher",
    "GateError",
    "TransportError",
    "UnknownActionError",
    "build_error_payload",
    # Logging
    "JsonFormatter",
    "SecretRedactingFilter",
    "configure_logging",
    # Settings
    "GateSettings",
    "GpioSettings",
    "HttpSettings",
    "LoggingSettings",
    "MqttSettings",
]
