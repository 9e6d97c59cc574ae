"""Claude subscription login via OAuth authorization code + PKCE.

The flow has two steps:

1. ``begin_login()`` creates a pending login attempt (code verifier plus
   random state) and returns the authorization URL for the operator to open.
2. ``exchange(code)`` takes the ``CODE#STATE`` string shown on the callback
   page, matches it to its pending attempt by state, exchanges the code for
   tokens, and writes them to the agent's credentials file.

Pending attempts live in an ``OAuthStateStore`` keyed by state and expire
after a configurable TTL, so concurrent logins never clobber each other.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import os
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from agentgate.config import AuthConfig

logger = structlog.get_logger(__name__)


class OAuthError(Exception):
    """Raised when a login attempt cannot be completed."""


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(32)


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def generate_state() -> str:
    return secrets.token_urlsafe(24)


@dataclass
class PendingLogin:
    code_verifier: str
    state: str
    created_at: float = field(default_factory=time.time)


class OAuthStateStore:
    """Pending login attempts keyed by their state parameter.

    Attributes:
        ttl_seconds: Age after which an attempt can no longer be exchanged
    """

    def __init__(self, ttl_seconds: int = 600) -> None:
        self.ttl_seconds = ttl_seconds
        self._pending: dict[str, PendingLogin] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def create(self) -> PendingLogin:
        self.purge_expired()
        login = PendingLogin(code_verifier=generate_code_verifier(), state=generate_state())
        self._pending[login.state] = login
        return login

    def consume(self, state: str, now: float | None = None) -> PendingLogin:
        """Remove and return the attempt for ``state``.

        Raises:
            OAuthError: If no attempt matches or it has expired
        """
        login = self._pending.pop(state, None)
        if login is None:
            raise OAuthError("State mismatch. Please start the login flow again.")
        now = time.time() if now is None else now
        if now - login.created_at > self.ttl_seconds:
            raise OAuthError("OAuth session expired. Please start again.")
        return login

    def purge_expired(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        expired = [
            state
            for state, login in self._pending.items()
            if now - login.created_at > self.ttl_seconds
        ]
        for state in expired:
            del self._pending[state]
        return len(expired)


def split_callback_code(code: str) -> tuple[str, str]:
    """Split the ``CODE#STATE`` string from the callback page.

    Raises:
        OAuthError: If the separator is missing
    """
    auth_code, sep, state = code.partition("#")
    if not sep:
        raise OAuthError("Invalid code format. Expected CODE#STATE from the callback page.")
    return auth_code, state


class ClaudeOAuthFlow:
    """Runs the PKCE login and persists the resulting credentials.

    Attributes:
        config: Auth configuration with OAuth endpoints and client id
        store: Pending login attempts
    """

    def __init__(
        self,
        config: AuthConfig,
        store: OAuthStateStore | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.store = store or OAuthStateStore(ttl_seconds=config.oauth_state_ttl_seconds)
        self._client = client
        self._logger = logger.bind(component="ClaudeOAuthFlow")

    def begin_login(self) -> str:
        """Start a login attempt and return the authorization URL."""
        login = self.store.create()
        params = {
            "code": "true",
            "client_id": self.config.oauth_client_id,
            "response_type": "code",
            "redirect_uri": self.config.oauth_redirect_uri,
            "scope": self.config.oauth_scope,
            "code_challenge": generate_code_challenge(login.code_verifier),
            "code_challenge_method": "S256",
            "state": login.state,
        }
        self._logger.info("oauth_login_started", pending=len(self.store))
        return f"{self.config.oauth_authorize_url}?{urlencode(params)}"

    async def exchange(self, code: str) -> dict[str, Any]:
        """Exchange a ``CODE#STATE`` callback string for tokens and save them.

        Returns:
            The token response body

        Raises:
            OAuthError: On malformed input, unknown/expired state, or a
                rejected exchange
        """
        auth_code, state = split_callback_code(code)
        login = self.store.consume(state)

        payload = {
            "grant_type": "authorization_code",
            "code": auth_code,
            "redirect_uri": self.config.oauth_redirect_uri,
            "client_id": self.config.oauth_client_id,
            "code_verifier": login.code_verifier,
            "state": state,
        }

        client = self._client or httpx.AsyncClient(timeout=30.0)
        try:
            response = await client.post(self.config.oauth_token_url, json=payload)
        except httpx.HTTPError as e:
            raise OAuthError(f"Token exchange error: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code >= 400:
            raise OAuthError(
                f"Token exchange failed ({response.status_code}): {response.text}"
            )

        tokens = response.json()
        await asyncio.to_thread(self.save_credentials, tokens)
        self._logger.info("oauth_tokens_saved", path=str(self.config.credentials_path))
        return tokens

    def save_credentials(self, tokens: dict[str, Any], now: float | None = None) -> Path:
        """Merge tokens into the credentials file under ``claudeAiOauth``.

        Other top-level keys in an existing file are preserved; an unreadable
        file is replaced.
        """
        path = self.config.credentials_path
        credentials: dict[str, Any] = {}
        if path.exists():
            try:
                credentials = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                self._logger.warning("credentials_unreadable", path=str(path), error=str(e))
                credentials = {}

        now = time.time() if now is None else now
        scope = tokens.get("scope") or ""
        credentials["claudeAiOauth"] = {
            "accessToken": tokens["access_token"],
            "refreshToken": tokens.get("refresh_token"),
            "expiresAt": int(now * 1000) + int(tokens.get("expires_in", 0)) * 1000,
            "scopes": [s for s in scope.split(" ") if s],
            "subscriptionType": None,
            "rateLimitTier": None,
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(credentials, indent=2), encoding="utf-8")
        os.chmod(path, 0o600)
        return path


async def check_auth_status(executable: str, use_api_key: bool) -> dict[str, Any]:
    """Report whether the agent CLI is logged in.

    API-key mode is always considered authenticated when a key is present.
    Otherwise runs ``<claude> auth status`` and reads its JSON output; any
    failure is reported as unauthenticated.
    """
    if use_api_key and os.environ.get("ANTHROPIC_API_KEY"):
        return {"authenticated": True, "method": "apiKey"}

    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            "auth",
            "status",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug("auth_status_unavailable", error=str(e))
        return {"authenticated": False, "method": "none"}

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=5.0)
    except asyncio.TimeoutError:
        proc.kill()
        logger.warning("auth_status_timeout", executable=executable)
        return {"authenticated": False, "method": "none"}

    try:
        status = json.loads(stdout.decode().strip())
    except ValueError:
        status = None
    if not isinstance(status, dict):
        return {"authenticated": False, "method": "none"}

    return {
        "authenticated": bool(status.get("loggedIn")),
        "method": status.get("authMethod") or "none",
    }
