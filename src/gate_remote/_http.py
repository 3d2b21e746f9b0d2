"""HTTP binding of the command dispatcher (aiohttp).

Routes::

    GET /api/gate/full
    GET /api/gate/pedestrian
    GET /api/gate/right
    GET /api/gate/left

Every route is wrapped in an authentication guard: ``hmac`` mode needs
``X-Timestamp`` + ``X-Signature`` over the request path, ``api_key``
mode needs ``X-API-Key``.

Status codes:

- 200 — pulse completed, body ``{"status": "success", "action": ...}``
- 401 — credentials missing or invalid
- 500 — server misconfigured (no secret/key), or the pulse failed; in
  the latter case the body is the failed result JSON
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Literal

from aiohttp import web

from gate_remote._actuator import ActuatorId
from gate_remote._auth import RequestAuthenticator
from gate_remote._dispatcher import CommandDispatcher
from gate_remote._errors import AuthenticationError, ConfigurationError
from gate_remote._signing import API_KEY_HEADER, SIGNATURE_HEADER, TIMESTAMP_HEADER

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]
AuthMode = Literal["hmac", "api_key"]

API_PREFIX = "/api/gate"


def _unauthorized() -> web.Response:
    return web.Response(status=401, text="Unauthorized")


def _misconfigured() -> web.Response:
    return web.Response(status=500, text="Server configuration error")


def require_signature(authenticator: RequestAuthenticator) -> Callable[[Handler], Handler]:
    """Guard a handler with HMAC signature validation."""

    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def guarded(request: web.Request) -> web.StreamResponse:
            try:
                authenticator.check_signature(
                    request.headers.get(TIMESTAMP_HEADER),
                    request.headers.get(SIGNATURE_HEADER),
                    request.path,
                )
            except ConfigurationError as exc:
                logger.error("Cannot authenticate %s: %s", request.path, exc)
                return _misconfigured()
            except AuthenticationError as exc:
                logger.warning(
                    "Unauthorized request to %s from %s: %s",
                    request.path,
                    request.remote,
                    exc,
                )
                return _unauthorized()
            return await handler(request)

        return guarded

    return decorator


def require_api_key(authenticator: RequestAuthenticator) -> Callable[[Handler], Handler]:
    """Guard a handler with static API key validation."""

    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def guarded(request: web.Request) -> web.StreamResponse:
            try:
                authenticator.check_api_key(request.headers.get(API_KEY_HEADER))
            except ConfigurationError as exc:
                logger.error("Cannot authenticate %s: %s", request.path, exc)
                return _misconfigured()
            except AuthenticationError as exc:
                logger.warning(
                    "Unauthorized request to %s from %s: %s",
                    request.path,
                    request.remote,
                    exc,
                )
                return _unauthorized()
            return await handler(request)

        return guarded

    return decorator


def _pulse_handler(dispatcher: CommandDispatcher, actuator: ActuatorId) -> Handler:
    async def handle(request: web.Request) -> web.StreamResponse:
        logger.info("HTTP %s from %s", request.path, request.remote)
        result = await dispatcher.dispatch(actuator.value)
        status = 200 if result.success else 500
        return web.json_response(result.to_dict(), status=status)

    handle.__name__ = f"pulse_{actuator.value}"
    return handle


def build_http_app(
    dispatcher: CommandDispatcher,
    authenticator: RequestAuthenticator,
    *,
    auth_mode: AuthMode = "hmac",
) -> web.Application:
    """Create the aiohttp application with one guarded route per action."""
    if auth_mode == "hmac":
        guard = require_signature(authenticator)
    elif auth_mode == "api_key":
        guard = require_api_key(authenticator)
    else:
        msg = f"unknown auth mode: {auth_mode!r}"
        raise ValueError(msg)

    app = web.Application()
    for actuator in ActuatorId:
        app.router.add_get(
            f"{API_PREFIX}/{actuator.value}",
            guard(_pulse_handler(dispatcher, actuator)),
            allow_head=False,
        )
    return app


class HttpServer:
    """Serves an aiohttp application on a TCP port."""

    def __init__(self, app: web.Application, host: str, port: int) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info("HTTP API listening on http://%s:%s%s", self._host, self._port, API_PREFIX)

    async def stop(self) -> None:
        # cleanup() also stops every site registered on the runner
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
