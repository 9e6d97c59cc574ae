"""Short-lived HMAC bearer tokens.

A token is ``base64("<username>:<timestamp_ms>:<hex hmac-sha256>")`` where
the HMAC covers ``"<username>:<timestamp_ms>"`` under the shared secret.
Tokens are minted by the web front-end right before calling the gateway and
are valid for a few minutes.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time

DEFAULT_TOKEN_TTL_SECONDS = 300
ANONYMOUS_USER = "anonymous"


def _signature(username: str, timestamp_ms: int, secret: str) -> str:
    data = f"{username}:{timestamp_ms}".encode()
    return hmac.new(secret.encode(), data, hashlib.sha256).hexdigest()


def issue_token(username: str, secret: str, now: float | None = None) -> str:
    """Mint a bearer token for ``username``.

    Args:
        username: Caller identity embedded in the token
        secret: Shared HMAC secret
        now: Epoch seconds to stamp the token with (defaults to now)

    Returns:
        Base64-encoded token string
    """
    timestamp_ms = int((time.time() if now is None else now) * 1000)
    raw = f"{username}:{timestamp_ms}:{_signature(username, timestamp_ms, secret)}"
    return base64.b64encode(raw.encode()).decode()


def verify_token(
    token: str,
    secret: str,
    ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    now: float | None = None,
) -> str | None:
    """Validate a bearer token.

    Args:
        token: Base64 token from the Authorization header
        secret: Shared HMAC secret
        ttl_seconds: Maximum token age
        now: Epoch seconds to validate against (defaults to now)

    Returns:
        The username (``"anonymous"`` when empty), or None if the token is
        malformed, expired, or carries a bad signature
    """
    try:
        decoded = base64.b64decode(token, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None

    parts = decoded.rsplit(":", 2)
    if len(parts) != 3:
        return None
    username, timestamp_str, signature = parts

    try:
        timestamp_ms = int(timestamp_str)
    except ValueError:
        return None

    now_ms = (time.time() if now is None else now) * 1000
    if now_ms - timestamp_ms > ttl_seconds * 1000:
        return None

    if not hmac.compare_digest(signature, _signature(username, timestamp_ms, secret)):
        return None

    return username or ANONYMOUS_USER


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):]
