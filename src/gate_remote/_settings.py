"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or a ``.env``
file.  All variables carry the ``GATE_`` prefix; nested models use
``__`` as the delimiter, e.g. ``GATE_MQTT__HOST=broker.local``.

The schema covers:

* **Credentials** — shared HMAC secret and optional static API key.
* **HTTP** — listen address of the command API.
* **MQTT** — broker connection, topics and heartbeat period.
* **GPIO** — actuator backend, pin map and pulse timing.
* **Logging** — level, format, optional file sink, rotation.

Loading the settings never fails for a missing secret;
:meth:`GateSettings.validate_startup` turns a missing credential into
a :class:`~gate_remote._errors.ConfigurationError` so that absence is
always detected before the service starts accepting commands.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal
from urllib.parse import urlsplit

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from gate_remote._actuator import DEFAULT_PINS, ActuatorId
from gate_remote._errors import ConfigurationError

_TLS_SCHEMES = {"mqtts", "ssl", "tls", "wss"}
_PLAIN_SCHEMES = {"mqtt", "tcp", "ws"}
_WEBSOCKET_SCHEMES = {"ws", "wss"}

# (plain, tls) default ports per transport
_DEFAULT_PORTS = {"tcp": (1883, 8883), "websockets": (80, 443)}

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings — nested via composition)
# -------------------------------------------------------------------


class HttpSettings(BaseModel):
    """HTTP command API listener.

    Environment variables::

        GATE_HTTP__ENABLED=true
        GATE_HTTP__HOST=0.0.0.0
        GATE_HTTP__PORT=8080
    """

    enabled: bool = Field(default=True, description="Serve the HTTP command API.")
    host: str = Field(default="0.0.0.0", description="Listen address.")  # noqa: S104
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=8080,
        description="Listen port.",
    )


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        GATE_MQTT__ENABLED=true
        GATE_MQTT__URL=mqtts://broker.example.com:8883
        GATE_MQTT__USERNAME=gate
        GATE_MQTT__PASSWORD=secret

    When ``url`` is set it overrides ``host``, ``port``, ``tls`` and the
    transport; ``ws``/``wss`` URLs connect over websockets.
    """

    enabled: bool = Field(default=False, description="Connect to the broker.")
    url: str | None = Field(
        default=None,
        description="Broker URL, e.g. 'mqtts://host:8883'.",
    )
    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    tls: bool = Field(default=False, description="Connect with TLS 1.2+.")
    transport: Literal["tcp", "websockets"] = Field(
        default="tcp",
        description="Socket transport; 'ws'/'wss' URLs select 'websockets'.",
    )
    websocket_path: str | None = Field(
        default=None,
        description="HTTP path of the websocket endpoint, e.g. '/mqtt'.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the app generates "
            "'gate-remote-{hex8}' at startup."
        ),
    )
    keepalive: Annotated[int, Field(ge=1)] = Field(
        default=20,
        description="Keepalive interval in seconds.",
    )
    session_expiry: Annotated[int, Field(ge=0)] = Field(
        default=60,
        description="MQTT v5 session expiry interval in seconds.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Initial seconds to wait before reconnecting after "
            "connection loss.  Doubles on each consecutive failure "
            "up to ``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )
    qos: Literal[0, 1, 2] = Field(default=1, description="QoS for all traffic.")
    control_topic: str = Field(
        default="gate/control",
        description="Topic carrying inbound commands.",
    )
    status_topic: str = Field(
        default="gate/status",
        description="Topic receiving heartbeats.",
    )
    error_topic: str = Field(
        default="gate/error",
        description="Topic receiving structured error reports.",
    )
    heartbeat_interval: Annotated[float, Field(gt=0)] = Field(
        default=60.0,
        description="Seconds between heartbeats.",
    )

    @model_validator(mode="after")
    def _apply_url(self) -> MqttSettings:
        if not self.url:
            return self
        parts = urlsplit(self.url)
        scheme = parts.scheme.lower()
        if scheme not in _TLS_SCHEMES | _PLAIN_SCHEMES or not parts.hostname:
            msg = f"invalid broker URL: {self.url!r}"
            raise ValueError(msg)
        self.tls = scheme in _TLS_SCHEMES
        self.host = parts.hostname
        if scheme in _WEBSOCKET_SCHEMES:
            self.transport = "websockets"
            self.websocket_path = parts.path or "/mqtt"
        else:
            self.transport = "tcp"
            self.websocket_path = None
        plain_port, tls_port = _DEFAULT_PORTS[self.transport]
        self.port = parts.port or (tls_port if self.tls else plain_port)
        return self


class GpioSettings(BaseModel):
    """Actuator backend and pulse timing.

    ``backend="mock"`` replaces the pins with an in-memory actuator
    that only logs, for development hosts.

    Environment variables::

        GATE_GPIO__BACKEND=gpio
        GATE_GPIO__PINS='{"full": 17, "pedestrian": 4, "right": 27, "left": 22}'
        GATE_GPIO__PULSE_DURATION=1.0
    """

    backend: Literal["gpio", "mock"] = Field(
        default="gpio",
        description="Actuator implementation.",
    )
    pins: dict[ActuatorId, int] = Field(
        default_factory=lambda: dict(DEFAULT_PINS),
        description="BCM pin number per actuator.",
    )
    pulse_duration: Annotated[float, Field(gt=0)] = Field(
        default=1.0,
        description="Seconds each pulse holds the line HIGH.",
    )
    release_attempts: Annotated[int, Field(ge=1)] = Field(
        default=3,
        description="Attempts to drive a line LOW before reporting failure.",
    )

    @field_validator("pins")
    @classmethod
    def _check_pins(cls, value: dict[ActuatorId, int]) -> dict[ActuatorId, int]:
        missing = set(ActuatorId) - set(value)
        if missing:
            msg = f"missing pins for: {', '.join(sorted(missing))}"
            raise ValueError(msg)
        if len(set(value.values())) != len(value):
            msg = "each actuator needs its own pin"
            raise ValueError(msg)
        return value


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    - ``"json"`` (default) — structured JSON lines for log aggregators.
    - ``"text"`` — human-readable timestamped format for terminals.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class GateSettings(BaseSettings):
    """Root settings for the gate controller.

    Example ``.env``::

        GATE_API_SECRET=5f0c...e1
        GATE_AUTH_MODE=hmac
        GATE_MQTT__ENABLED=true
        GATE_MQTT__URL=mqtts://broker.example.com:8883
        GATE_MQTT__USERNAME=gate
        GATE_MQTT__PASSWORD=secret
        GATE_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="GATE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_secret: SecretStr | None = Field(
        default=None,
        description="Shared secret for HMAC request signing.",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Static API key for 'api_key' auth mode.",
    )
    auth_mode: Literal["hmac", "api_key"] = Field(
        default="hmac",
        description="Which credential the HTTP API requires.",
    )
    replay_protection: bool = Field(
        default=False,
        description="Reject a signature seen before within the freshness window.",
    )
    http: HttpSettings = Field(default_factory=HttpSettings)
    mqtt: MqttSettings = Field(default_factory=MqttSettings)
    gpio: GpioSettings = Field(default_factory=GpioSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def validate_startup(self) -> None:
        """Check that the enabled surfaces have their credentials.

        Raises:
            ConfigurationError: On the first missing or inconsistent
                setting.
        """
        if not self.http.enabled and not self.mqtt.enabled:
            msg = "neither HTTP nor MQTT is enabled"
            raise ConfigurationError(msg)

        if self.http.enabled:
            if self.auth_mode == "hmac" and not _has_value(self.api_secret):
                msg = "GATE_API_SECRET must be set for HMAC authentication"
                raise ConfigurationError(msg)
            if self.auth_mode == "api_key" and not _has_value(self.api_key):
                msg = "GATE_API_KEY must be set for API key authentication"
                raise ConfigurationError(msg)

        if self.mqtt.enabled:
            has_user = bool(self.mqtt.username)
            has_password = _has_value(self.mqtt.password)
            if has_user != has_password:
                msg = "GATE_MQTT__USERNAME and GATE_MQTT__PASSWORD must be set together"
                raise ConfigurationError(msg)

    def secret_values(self) -> list[str]:
        """Return every configured secret, for log redaction."""
        candidates = (self.api_secret, self.api_key, self.mqtt.password)
        return [s.get_secret_value() for s in candidates if _has_value(s)]


def _has_value(secret: SecretStr | None) -> bool:
    return secret is not None and bool(secret.get_secret_value())
