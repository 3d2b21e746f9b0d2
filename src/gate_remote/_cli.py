"""Command-line interface (Typer-based).

Commands:

- ``serve`` — run the controller (HTTP API, MQTT binding, heartbeat).
- ``trigger ACTION`` — send a signed request to a running controller.
- ``genkey`` — print a fresh ``GATE_API_SECRET`` line.
"""

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Annotated, get_args

import aiohttp
import typer
from pydantic import ValidationError

from gate_remote._client import DEFAULT_BASE_URL, GateClient, GateRequestError
from gate_remote._errors import ActuationError, ConfigurationError, UnknownActionError
from gate_remote._settings import LoggingSettings
from gate_remote._signing import generate_secret

if TYPE_CHECKING:
    from gate_remote._app import GateApp
    from gate_remote._settings import GateSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

# ---------------------------------------------------------------------------
# Allowed values (extracted from LoggingSettings Literal types)
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)


def build_cli(app: "GateApp") -> typer.Typer:
    """Construct the Typer CLI around a :class:`GateApp`."""
    name = app.name
    version = app.version

    cli = typer.Typer(
        help=f"{name} v{version} — remote gate controller",
        no_args_is_help=True,
    )

    def _show_version(value: bool) -> None:
        if value:
            typer.echo(f"{name} v{version}")
            raise typer.Exit()

    @cli.callback()
    def root(
        version_flag: Annotated[
            bool | None,
            typer.Option(
                "--version",
                is_eager=True,
                callback=_show_version,
                help="Show version and exit.",
            ),
        ] = None,
    ) -> None:
        """Trigger gate actuators over HTTP or MQTT."""

    # -- serve --------------------------------------------------------------

    @cli.command()
    def serve(
        mock_gpio: Annotated[
            bool,
            typer.Option("--mock-gpio", help="Use in-memory actuators instead of GPIO."),
        ] = False,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
    ) -> None:
        """Run the gate controller until SIGTERM/SIGINT."""
        if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
            raise typer.BadParameter(
                f"Invalid log level '{log_level}'. "
                f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
                param_hint="'--log-level'",
            )

        if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
            raise typer.BadParameter(
                f"Invalid log format '{log_format}'. "
                f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
                param_hint="'--log-format'",
            )

        try:
            settings: GateSettings = app._settings_class(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        if log_level is not None:
            settings.logging = settings.logging.model_copy(
                update={"level": log_level.upper()},
            )
        if log_format is not None:
            settings.logging = settings.logging.model_copy(
                update={"format": log_format.lower()},
            )
        if mock_gpio:
            settings.gpio = settings.gpio.model_copy(update={"backend": "mock"})

        try:
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(app._run_async(settings=settings))
        except ConfigurationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc
        except ActuationError as exc:
            logger.error("GPIO initialisation failed: %s", exc)
            raise SystemExit(EXIT_RUNTIME_ERROR) from exc
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            raise SystemExit(EXIT_RUNTIME_ERROR) from exc

    # -- trigger ------------------------------------------------------------

    @cli.command()
    def trigger(
        action: Annotated[
            str,
            typer.Argument(help="Action to perform (full/pedestrian/right/left)."),
        ],
        url: Annotated[
            str,
            typer.Option("--url", envvar="GATE_URL", help="Controller base URL."),
        ] = DEFAULT_BASE_URL,
        secret: Annotated[
            str | None,
            typer.Option(
                "--secret",
                envvar="GATE_API_SECRET",
                help="Shared HMAC secret.",
                show_default=False,
            ),
        ] = None,
    ) -> None:
        """Send a signed trigger request to a running controller."""
        if not secret:
            typer.echo("GATE_API_SECRET environment variable must be set", err=True)
            raise SystemExit(EXIT_CONFIG_ERROR)

        client = GateClient(secret, url)
        try:
            asyncio.run(client.trigger(action))
        except UnknownActionError as exc:
            typer.echo(
                f"Invalid action '{exc.action}'. Must be one of: full, pedestrian, right, left",
                err=True,
            )
            raise SystemExit(EXIT_CONFIG_ERROR) from exc
        except (GateRequestError, aiohttp.ClientError, TimeoutError) as exc:
            typer.echo(f"Request failed: {exc}", err=True)
            raise SystemExit(EXIT_RUNTIME_ERROR) from exc

        typer.echo(f"Successfully triggered gate action: {action}")

    # -- genkey -------------------------------------------------------------

    @cli.command()
    def genkey() -> None:
        """Print a new random shared secret."""
        typer.echo(f"GATE_API_SECRET={generate_secret()}")

    return cli


def main() -> None:
    """Console-script entrypoint."""
    from gate_remote._app import GateApp

    build_cli(GateApp())()
