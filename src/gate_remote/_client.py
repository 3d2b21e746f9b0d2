"""Signed HTTP client for triggering gate actions remotely."""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

import aiohttp

from gate_remote._actuator import ActuatorId
from gate_remote._clock import ClockPort, SystemClock
from gate_remote._commands import Command
from gate_remote._errors import GateError
from gate_remote._http import API_PREFIX
from gate_remote._signing import signed_headers

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"


class GateRequestError(GateError):
    """The server answered a trigger request with a non-200 status."""

    def __init__(self, status: int, body: str = "") -> None:
        super().__init__(f"request failed with status: {status}")
        self.status = status
        self.body = body


class GateClient:
    """Sends HMAC-signed trigger requests to a gate controller.

    Args:
        secret: Shared HMAC secret.
        base_url: Controller base URL, e.g. ``http://gate.local:8080``.
        clock: Source of the signing timestamp.
        timeout: Total request timeout in seconds.  Must exceed the
            pulse duration, since the server replies after the pulse.
    """

    def __init__(
        self,
        secret: str,
        base_url: str = DEFAULT_BASE_URL,
        *,
        clock: ClockPort | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not secret:
            msg = "a shared secret is required"
            raise ValueError(msg)
        self._secret = secret
        self._base_url = base_url.rstrip("/")
        self._clock = clock if clock is not None else SystemClock()
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def url_for(self, action: ActuatorId) -> str:
        return f"{self._base_url}{API_PREFIX}/{action.value}"

    async def trigger(
        self,
        action: ActuatorId | str,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Trigger *action*.

        Raises:
            UnknownActionError: If *action* is not an actuator name.
            GateRequestError: If the server does not answer 200.
        """
        actuator = action if isinstance(action, ActuatorId) else Command.from_action(action).action
        url = self.url_for(actuator)
        headers = signed_headers(urlsplit(url).path, self._secret, now=self._clock.now())
        logger.debug("Sending request to %s", url)

        if session is not None:
            await self._send(session, url, headers)
            return
        async with aiohttp.ClientSession(timeout=self._timeout) as owned:
            await self._send(owned, url, headers)

    async def _send(
        self,
        session: aiohttp.ClientSession,
        url: str,
        headers: dict[str, str],
    ) -> None:
        async with session.get(url, headers=headers) as response:
            if response.status != 200:
                raise GateRequestError(response.status, await response.text())
