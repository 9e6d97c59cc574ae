"""Unit tests for the Claude OAuth login flow.

Tests cover:
- PKCE helpers
- Per-attempt state store with expiry
- Authorization URL construction
- Token exchange against a mocked token endpoint
- Credentials file persistence
- CLI auth status probing
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import stat
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from agentgate.auth.oauth import (
    ClaudeOAuthFlow,
    OAuthError,
    OAuthStateStore,
    check_auth_status,
    generate_code_challenge,
    generate_code_verifier,
    split_callback_code,
)
from agentgate.config import AuthConfig


@pytest.fixture
def auth_config(tmp_path: Path) -> AuthConfig:
    return AuthConfig(credentials_path=tmp_path / ".claude" / ".credentials.json")


@pytest.fixture
def flow(auth_config: AuthConfig) -> ClaudeOAuthFlow:
    return ClaudeOAuthFlow(auth_config)


class TestPkce:
    def test_verifier_is_url_safe(self) -> None:
        verifier = generate_code_verifier()
        assert len(verifier) >= 43
        assert "=" not in verifier

    def test_challenge_is_s256_without_padding(self) -> None:
        verifier = "test-verifier"
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        assert generate_code_challenge(verifier) == expected.rstrip(b"=").decode()


class TestStateStore:
    def test_consume_removes_attempt(self) -> None:
        store = OAuthStateStore()
        login = store.create()

        assert store.consume(login.state) is login
        with pytest.raises(OAuthError, match="State mismatch"):
            store.consume(login.state)

    def test_concurrent_attempts_are_independent(self) -> None:
        store = OAuthStateStore()
        first = store.create()
        second = store.create()

        assert store.consume(second.state).code_verifier == second.code_verifier
        assert store.consume(first.state).code_verifier == first.code_verifier

    def test_expired_attempt(self) -> None:
        store = OAuthStateStore(ttl_seconds=10)
        login = store.create()

        with pytest.raises(OAuthError, match="expired"):
            store.consume(login.state, now=login.created_at + 11)

    def test_purge_expired(self) -> None:
        store = OAuthStateStore(ttl_seconds=10)
        login = store.create()

        assert store.purge_expired(now=login.created_at + 5) == 0
        assert store.purge_expired(now=login.created_at + 11) == 1
        assert len(store) == 0


class TestSplitCallbackCode:
    def test_splits_code_and_state(self) -> None:
        assert split_callback_code("abc#xyz") == ("abc", "xyz")

    def test_missing_separator(self) -> None:
        with pytest.raises(OAuthError, match="CODE#STATE"):
            split_callback_code("abc")


class TestBeginLogin:
    def test_authorize_url(self, flow: ClaudeOAuthFlow, auth_config: AuthConfig) -> None:
        url = flow.begin_login()

        parsed = urlparse(url)
        params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == auth_config.oauth_authorize_url
        assert params["client_id"] == auth_config.oauth_client_id
        assert params["response_type"] == "code"
        assert params["redirect_uri"] == auth_config.oauth_redirect_uri
        assert params["scope"] == auth_config.oauth_scope
        assert params["code_challenge_method"] == "S256"

        login = flow.store.consume(params["state"])
        assert params["code_challenge"] == generate_code_challenge(login.code_verifier)


class TestExchange:
    @respx.mock
    async def test_exchange_saves_credentials(
        self, flow: ClaudeOAuthFlow, auth_config: AuthConfig
    ) -> None:
        route = respx.post(auth_config.oauth_token_url).mock(
            return_value=httpx.Response(
                200,
                json={
                    "access_token": "access",
                    "refresh_token": "refresh",
                    "expires_in": 3600,
                    "scope": "user:profile user:inference",
                },
            )
        )
        login = flow.store.create()

        tokens = await flow.exchange(f"the-code#{login.state}")

        assert tokens["access_token"] == "access"
        body = json.loads(route.calls.last.request.content)
        assert body["grant_type"] == "authorization_code"
        assert body["code"] == "the-code"
        assert body["code_verifier"] == login.code_verifier
        assert body["state"] == login.state

        saved = json.loads(auth_config.credentials_path.read_text())
        oauth = saved["claudeAiOauth"]
        assert oauth["accessToken"] == "access"
        assert oauth["refreshToken"] == "refresh"
        assert oauth["scopes"] == ["user:profile", "user:inference"]
        assert oauth["subscriptionType"] is None

    @respx.mock
    async def test_rejected_exchange(self, flow: ClaudeOAuthFlow, auth_config: AuthConfig) -> None:
        respx.post(auth_config.oauth_token_url).mock(
            return_value=httpx.Response(400, text="invalid_grant")
        )
        login = flow.store.create()

        with pytest.raises(OAuthError, match="400"):
            await flow.exchange(f"code#{login.state}")
        assert not auth_config.credentials_path.exists()

    @respx.mock
    async def test_network_error(self, flow: ClaudeOAuthFlow, auth_config: AuthConfig) -> None:
        respx.post(auth_config.oauth_token_url).mock(side_effect=httpx.ConnectError("down"))
        login = flow.store.create()

        with pytest.raises(OAuthError, match="Token exchange error"):
            await flow.exchange(f"code#{login.state}")

    async def test_state_is_single_use(self, flow: ClaudeOAuthFlow) -> None:
        login = flow.store.create()
        flow.store.consume(login.state)

        with pytest.raises(OAuthError, match="State mismatch"):
            await flow.exchange(f"code#{login.state}")

    async def test_uses_injected_client(self, auth_config: AuthConfig) -> None:
        client = MagicMock(spec=httpx.AsyncClient)
        client.post = AsyncMock(
            return_value=httpx.Response(200, json={"access_token": "a", "expires_in": 60})
        )
        flow = ClaudeOAuthFlow(auth_config, client=client)
        login = flow.store.create()

        await flow.exchange(f"code#{login.state}")

        client.post.assert_awaited_once()
        client.aclose.assert_not_called()


class TestSaveCredentials:
    def test_preserves_other_keys(self, flow: ClaudeOAuthFlow, auth_config: AuthConfig) -> None:
        path = auth_config.credentials_path
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"other": {"keep": True}}))

        flow.save_credentials({"access_token": "a", "expires_in": 10}, now=1000.0)

        saved = json.loads(path.read_text())
        assert saved["other"] == {"keep": True}
        assert saved["claudeAiOauth"]["expiresAt"] == 1_010_000
        assert saved["claudeAiOauth"]["scopes"] == []

    def test_replaces_unreadable_file(self, flow: ClaudeOAuthFlow, auth_config: AuthConfig) -> None:
        path = auth_config.credentials_path
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        flow.save_credentials({"access_token": "a"})

        assert json.loads(path.read_text())["claudeAiOauth"]["accessToken"] == "a"

    def test_file_is_private(self, flow: ClaudeOAuthFlow, auth_config: AuthConfig) -> None:
        path = flow.save_credentials({"access_token": "a"})
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


class TestCheckAuthStatus:
    async def test_api_key_mode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        assert await check_auth_status("claude", use_api_key=True) == {
            "authenticated": True,
            "method": "apiKey",
        }

    async def test_missing_executable(self, tmp_path: Path) -> None:
        status = await check_auth_status(str(tmp_path / "no-such-claude"), use_api_key=False)
        assert status == {"authenticated": False, "method": "none"}

    async def test_parses_cli_output(self) -> None:
        proc = MagicMock()
        proc.communicate = AsyncMock(
            return_value=(b'{"loggedIn": true, "authMethod": "claude.ai"}', b"")
        )
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            status = await check_auth_status("claude", use_api_key=False)

        assert status == {"authenticated": True, "method": "claude.ai"}

    async def test_unparseable_output(self) -> None:
        proc = MagicMock()
        proc.communicate = AsyncMock(return_value=(b"not json", b""))
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            status = await check_auth_status("claude", use_api_key=False)

        assert status == {"authenticated": False, "method": "none"}
