"""Unit tests for gate_remote._http — aiohttp command API.

Test Techniques Used:
    - Integration Testing: aiohttp TestServer/TestClient over loopback
    - Decision Table: Credentials × configuration → 200 / 401 / 500
    - Fault Injection: Hardware failure mapped to 500 with result body
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from gate_remote._actuator import ActuatorId, Level, MockActuator
from gate_remote._auth import RequestAuthenticator, SeenSignatureCache
from gate_remote._controller import ActuationController
from gate_remote._dispatcher import CommandDispatcher
from gate_remote._http import API_PREFIX, HttpServer, build_http_app
from gate_remote._signing import API_KEY_HEADER, format_timestamp, sign, signed_headers
from gate_remote.testing import FakeClock

SECRET = "http-test-secret"
PEDESTRIAN = f"{API_PREFIX}/pedestrian"


@pytest.fixture
def dispatcher(mock_actuator: MockActuator) -> CommandDispatcher:
    """Dispatcher with a short pulse."""
    return CommandDispatcher(ActuationController(mock_actuator, pulse_duration=0.02))


async def _client(app: web.Application) -> TestClient:
    client = TestClient(TestServer(app))
    await client.start_server()
    return client


@pytest.fixture
async def hmac_client(
    dispatcher: CommandDispatcher,
    fake_clock: FakeClock,
) -> AsyncIterator[TestClient]:
    """Client for an HMAC-guarded app."""
    authenticator = RequestAuthenticator(secret=SECRET, clock=fake_clock)
    client = await _client(build_http_app(dispatcher, authenticator))
    yield client
    await client.close()


# ---------------------------------------------------------------------------
# HMAC mode
# ---------------------------------------------------------------------------


class TestHmacRoutes:
    """Tests for signed requests.

    Technique: Decision Table.
    """

    @pytest.mark.parametrize("actuator", list(ActuatorId))
    async def test_signed_request_pulses(
        self,
        hmac_client: TestClient,
        fake_clock: FakeClock,
        mock_actuator: MockActuator,
        actuator: ActuatorId,
    ) -> None:
        """A fresh, correctly signed request returns 200 after the pulse."""
        path = f"{API_PREFIX}/{actuator.value}"
        resp = await hmac_client.get(path, headers=signed_headers(path, SECRET, now=fake_clock.now()))

        assert resp.status == 200
        assert await resp.json() == {"status": "success", "action": actuator.value}
        assert len(mock_actuator.pulses(actuator)) == 1

    async def test_missing_headers_unauthorized(
        self,
        hmac_client: TestClient,
        mock_actuator: MockActuator,
    ) -> None:
        """No signature headers → 401 and no actuation."""
        mock_actuator.reset()
        resp = await hmac_client.get(PEDESTRIAN)

        assert resp.status == 401
        assert await resp.text() == "Unauthorized"
        assert mock_actuator.transitions == []

    async def test_wrong_secret_unauthorized(
        self,
        hmac_client: TestClient,
        fake_clock: FakeClock,
    ) -> None:
        """A signature made with another secret → 401."""
        headers = signed_headers(PEDESTRIAN, "not-the-secret", now=fake_clock.now())
        resp = await hmac_client.get(PEDESTRIAN, headers=headers)
        assert resp.status == 401

    async def test_signature_for_other_path_unauthorized(
        self,
        hmac_client: TestClient,
        fake_clock: FakeClock,
    ) -> None:
        """A pedestrian signature cannot open the full gate."""
        headers = signed_headers(PEDESTRIAN, SECRET, now=fake_clock.now())
        resp = await hmac_client.get(f"{API_PREFIX}/full", headers=headers)
        assert resp.status == 401

    async def test_stale_request_unauthorized(
        self,
        hmac_client: TestClient,
        fake_clock: FakeClock,
        mock_actuator: MockActuator,
    ) -> None:
        """The same request replayed ten minutes later → 401."""
        headers = signed_headers(PEDESTRIAN, SECRET, now=fake_clock.now())
        first = await hmac_client.get(PEDESTRIAN, headers=headers)
        assert first.status == 200

        fake_clock.advance(minutes=10)
        replay = await hmac_client.get(PEDESTRIAN, headers=headers)

        assert replay.status == 401
        assert len(mock_actuator.pulses(ActuatorId.PEDESTRIAN)) == 1

    async def test_query_string_not_signed(
        self,
        hmac_client: TestClient,
        fake_clock: FakeClock,
    ) -> None:
        """The signature covers the path only."""
        headers = signed_headers(PEDESTRIAN, SECRET, now=fake_clock.now())
        resp = await hmac_client.get(f"{PEDESTRIAN}?source=phone", headers=headers)
        assert resp.status == 200

    async def test_hardware_failure_is_500_with_result(
        self,
        hmac_client: TestClient,
        fake_clock: FakeClock,
        mock_actuator: MockActuator,
    ) -> None:
        """A failed pulse reports the failed result with status 500."""
        mock_actuator.fail_next(ActuatorId.PEDESTRIAN, Level.HIGH)
        headers = signed_headers(PEDESTRIAN, SECRET, now=fake_clock.now())

        resp = await hmac_client.get(PEDESTRIAN, headers=headers)

        assert resp.status == 500
        body = await resp.json()
        assert body["status"] == "failed"
        assert body["action"] == "pedestrian"

    async def test_unknown_route_not_found(self, hmac_client: TestClient) -> None:
        """Only the four actions exist."""
        resp = await hmac_client.get(f"{API_PREFIX}/garage")
        assert resp.status == 404

    async def test_post_not_allowed(self, hmac_client: TestClient) -> None:
        """Routes are GET only."""
        resp = await hmac_client.post(PEDESTRIAN)
        assert resp.status == 405


class TestReplayProtection:
    """Tests for the optional replay cache on the HTTP surface.

    Technique: State-based Testing.
    """

    async def test_second_use_within_window_unauthorized(
        self,
        dispatcher: CommandDispatcher,
        fake_clock: FakeClock,
    ) -> None:
        """With replay protection a signed request works once."""
        authenticator = RequestAuthenticator(
            secret=SECRET,
            clock=fake_clock,
            replay_cache=SeenSignatureCache(),
        )
        client = await _client(build_http_app(dispatcher, authenticator))
        try:
            headers = signed_headers(PEDESTRIAN, SECRET, now=fake_clock.now())
            assert (await client.get(PEDESTRIAN, headers=headers)).status == 200
            assert (await client.get(PEDESTRIAN, headers=headers)).status == 401
        finally:
            await client.close()


class TestMisconfiguration:
    """Tests for a server without credentials.

    Technique: Error Condition Testing.
    """

    async def test_missing_secret_is_500(
        self,
        dispatcher: CommandDispatcher,
        fake_clock: FakeClock,
        mock_actuator: MockActuator,
    ) -> None:
        """No secret → 500 for every request, never a bypass."""
        mock_actuator.reset()
        client = await _client(build_http_app(dispatcher, RequestAuthenticator(clock=fake_clock)))
        try:
            timestamp = format_timestamp(fake_clock.now())
            headers = {"X-Timestamp": timestamp, "X-Signature": sign(timestamp, PEDESTRIAN, "")}
            resp = await client.get(PEDESTRIAN, headers=headers)

            assert resp.status == 500
            assert await resp.text() == "Server configuration error"
            assert mock_actuator.transitions == []
        finally:
            await client.close()

    def test_unknown_auth_mode_rejected(self, dispatcher: CommandDispatcher) -> None:
        """Only 'hmac' and 'api_key' are valid."""
        with pytest.raises(ValueError, match="unknown auth mode"):
            build_http_app(dispatcher, RequestAuthenticator(), auth_mode="basic")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# API key mode
# ---------------------------------------------------------------------------


class TestApiKeyRoutes:
    """Tests for the static API key guard.

    Technique: Decision Table.
    """

    @pytest.fixture
    async def key_client(
        self,
        dispatcher: CommandDispatcher,
        fake_clock: FakeClock,
    ) -> AsyncIterator[TestClient]:
        authenticator = RequestAuthenticator(secret=SECRET, api_key="k-1", clock=fake_clock)
        client = await _client(build_http_app(dispatcher, authenticator, auth_mode="api_key"))
        yield client
        await client.close()

    async def test_valid_key_pulses(self, key_client: TestClient) -> None:
        """The configured key is accepted."""
        resp = await key_client.get(f"{API_PREFIX}/left", headers={API_KEY_HEADER: "k-1"})
        assert resp.status == 200

    @pytest.mark.parametrize("headers", [{}, {API_KEY_HEADER: "k-2"}, {API_KEY_HEADER: ""}])
    async def test_bad_key_unauthorized(self, key_client: TestClient, headers: dict) -> None:
        """Missing or wrong keys → 401."""
        resp = await key_client.get(f"{API_PREFIX}/left", headers=headers)
        assert resp.status == 401

    async def test_signature_not_accepted_in_key_mode(
        self,
        key_client: TestClient,
        fake_clock: FakeClock,
    ) -> None:
        """Modes do not mix: a valid signature is not an API key."""
        path = f"{API_PREFIX}/left"
        resp = await key_client.get(path, headers=signed_headers(path, SECRET, now=fake_clock.now()))
        assert resp.status == 401


# ---------------------------------------------------------------------------
# HttpServer
# ---------------------------------------------------------------------------


class TestHttpServer:
    """Tests for the TCP server wrapper.

    Technique: State Transition Testing.
    """

    async def test_start_and_stop(self, dispatcher: CommandDispatcher) -> None:
        """The server binds and releases its port."""
        app = build_http_app(dispatcher, RequestAuthenticator(secret=SECRET))
        server = HttpServer(app, "127.0.0.1", 0)
        await server.start()
        await server.stop()
        await server.stop()

