"""Request authentication: static API key and time-windowed HMAC.

Two independent checks guard the HTTP surface:

- **API key** — the ``X-API-Key`` header is compared against the
  configured key in constant time.
- **Signature** — the ``X-Timestamp`` / ``X-Signature`` pair is
  validated: the timestamp must parse as RFC 3339 and lie within the
  freshness window (five minutes, either direction) of the server
  clock, and the signature must equal :func:`~gate_remote._signing.sign`
  over ``timestamp + path``.

The freshness window bounds replay exposure without server-side state.
A captured request can still be replayed while it is fresh; deployments
that need more can enable :class:`SeenSignatureCache`, which rejects a
signature the second time it is presented inside the window.

A missing secret or key is a :class:`ConfigurationError` (server side),
never an :class:`AuthenticationError`, and never a bypass.  Neither
exception message ever contains the configured credential.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from gate_remote._clock import ClockPort, SystemClock
from gate_remote._errors import AuthenticationError, ConfigurationError
from gate_remote._signing import parse_timestamp, sign

logger = logging.getLogger(__name__)

FRESHNESS_WINDOW = timedelta(minutes=5)


def _constant_time_equal(provided: str, expected: str) -> bool:
    # compare_digest rejects non-ASCII str; bytes keep it total.
    return hmac.compare_digest(provided.encode(), expected.encode())


@dataclass
class SeenSignatureCache:
    """Remembers accepted signatures until they fall out of the window.

    Entries expire at ``timestamp + window``; after that the freshness
    check rejects the request anyway, so the entry is no longer needed.
    """

    window: timedelta = FRESHNESS_WINDOW
    _seen: dict[str, datetime] = field(default_factory=dict, init=False, repr=False)

    def check_and_remember(self, signature: str, timestamp: datetime, now: datetime) -> bool:
        """Return ``False`` if *signature* was already accepted, else record it."""
        self._prune(now)
        if signature in self._seen:
            return False
        self._seen[signature] = timestamp + self.window
        return True

    def _prune(self, now: datetime) -> None:
        expired = [sig for sig, expiry in self._seen.items() if expiry < now]
        for sig in expired:
            del self._seen[sig]

    def __len__(self) -> int:
        return len(self._seen)


class RequestAuthenticator:
    """Validates API keys and signed requests.

    Args:
        secret: Shared HMAC secret, or ``None`` when unconfigured.
        api_key: Expected static API key, or ``None`` when unconfigured.
        clock: Source of the current time.
        window: Maximum distance between a request timestamp and now.
        replay_cache: Optional cache rejecting reused signatures.
    """

    def __init__(
        self,
        *,
        secret: str | None = None,
        api_key: str | None = None,
        clock: ClockPort | None = None,
        window: timedelta = FRESHNESS_WINDOW,
        replay_cache: SeenSignatureCache | None = None,
    ) -> None:
        self._secret = secret or None
        self._api_key = api_key or None
        self._clock = clock if clock is not None else SystemClock()
        self._window = window
        self._replay_cache = replay_cache

    @property
    def window(self) -> timedelta:
        return self._window

    # -- API key ------------------------------------------------------------

    def check_api_key(self, provided: str | None) -> None:
        """Validate a static API key.

        Raises:
            ConfigurationError: If no expected key is configured.
            AuthenticationError: If *provided* is missing or wrong.
        """
        if self._api_key is None:
            msg = "API key is not configured"
            raise ConfigurationError(msg)
        if not provided or not _constant_time_equal(provided, self._api_key):
            msg = "invalid API key"
            raise AuthenticationError(msg)

    def is_valid_api_key(self, provided: str | None) -> bool:
        """Boolean form of :meth:`check_api_key`.

        Configuration errors still raise; only authentication failures
        map to ``False``.
        """
        try:
            self.check_api_key(provided)
        except AuthenticationError:
            return False
        return True

    # -- Signature ----------------------------------------------------------

    def check_signature(
        self,
        timestamp: str | None,
        signature: str | None,
        path: str,
    ) -> None:
        """Validate a signed request for *path*.

        Raises:
            ConfigurationError: If no secret is configured.
            AuthenticationError: If the timestamp is missing, unparsable
                or outside the freshness window, or the signature does
                not match.
        """
        if self._secret is None:
            msg = "API secret is not configured"
            raise ConfigurationError(msg)
        if not timestamp or not signature:
            msg = "missing timestamp or signature"
            raise AuthenticationError(msg)

        try:
            issued_at = parse_timestamp(timestamp)
        except ValueError as exc:
            msg = "unparsable timestamp"
            raise AuthenticationError(msg) from exc

        now = self._clock.now()
        if abs(now - issued_at) > self._window:
            msg = "timestamp outside freshness window"
            raise AuthenticationError(msg)

        expected = sign(timestamp, path, self._secret)
        if not _constant_time_equal(signature, expected):
            msg = "signature mismatch"
            raise AuthenticationError(msg)

        if self._replay_cache is not None and not self._replay_cache.check_and_remember(
            signature, issued_at, now
        ):
            msg = "signature already used"
            raise AuthenticationError(msg)

    def is_valid_signature(
        self,
        timestamp: str | None,
        signature: str | None,
        path: str,
    ) -> bool:
        """Boolean form of :meth:`check_signature`."""
        try:
            self.check_signature(timestamp, signature, path)
        except AuthenticationError as exc:
            logger.debug("Signature rejected for %s: %s", path, exc)
            return False
        return True
