"""HMAC request signing shared by clients and the server.

A signed request carries two headers::

    X-Timestamp: 2024-01-01T12:00:00Z
    X-Signature: hex(HMAC-SHA256(secret, timestamp + path))

The signature covers the exact timestamp string the client sent and the
URL path (no query string).  The server recomputes it with
:func:`sign` and compares in constant time.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets
from datetime import UTC, datetime

TIMESTAMP_HEADER = "X-Timestamp"
SIGNATURE_HEADER = "X-Signature"
API_KEY_HEADER = "X-API-Key"

_RFC3339 = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$",
)


def sign(timestamp: str, path: str, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``timestamp + path`` keyed by *secret*."""
    message = f"{timestamp}{path}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def format_timestamp(moment: datetime) -> str:
    """Format *moment* as an RFC 3339 UTC timestamp with second precision."""
    if moment.tzinfo is None:
        msg = "timestamp must be timezone-aware"
        raise ValueError(msg)
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp.

    RFC 3339 requires the full date, time and an explicit offset, so
    date-only, naive or ISO 8601 "basic" forms are rejected.

    Raises:
        ValueError: If *value* is not a valid RFC 3339 timestamp.
    """
    # RFC 3339 permits a lowercase "t"/"z"; fromisoformat does not.
    normalized = value.strip().upper()
    if not _RFC3339.match(normalized):
        msg = f"not an RFC 3339 timestamp: {value!r}"
        raise ValueError(msg)
    return datetime.fromisoformat(normalized)


def signed_headers(path: str, secret: str, *, now: datetime) -> dict[str, str]:
    """Build the ``X-Timestamp`` / ``X-Signature`` headers for *path*."""
    timestamp = format_timestamp(now)
    return {
        TIMESTAMP_HEADER: timestamp,
        SIGNATURE_HEADER: sign(timestamp, path, secret),
    }


def generate_secret(nbytes: int = 32) -> str:
    """Return a fresh random shared secret, hex-encoded."""
    return secrets.token_hex(nbytes)
