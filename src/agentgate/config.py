"""Configuration management for Agentgate.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Programmatic overrides (passed to GatewayConfig constructor)
2. Environment variables (AGENTGATE_* prefix)
3. TOML configuration file
4. Default values defined in this module

Example TOML configuration:
    [queue]
    pool_size = 2
    max_queue_size = 20

Example environment variable override:
    AGENTGATE_QUEUE__POOL_SIZE=3
    AGENTGATE_AUTH__SECRET="change-me"
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stdout only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=50, ge=1, le=1000)
    retention_count: int = Field(default=10, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class QueueConfig(BaseSettings):
    """Anonymous worker pool and backlog configuration.

    Attributes:
        pool_size: Number of single-use anonymous workers kept warm
        max_queue_size: Backlog capacity before requests are rejected
        health_check_interval_seconds: Seconds between pool health sweeps
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_QUEUE__",
        extra="forbid",
    )

    pool_size: int = Field(default=1, ge=1, le=32)
    max_queue_size: int = Field(default=20, ge=0, le=10000)
    health_check_interval_seconds: float = Field(default=60.0, gt=0, le=3600)


class SessionConfig(BaseSettings):
    """Session-affine worker configuration.

    Attributes:
        max_sessions: Maximum number of concurrently open sessions
        idle_timeout_seconds: Inactivity before a session is collected
        gc_interval_seconds: Seconds between idle collection sweeps
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_SESSIONS__",
        extra="forbid",
    )

    max_sessions: int = Field(default=20, ge=1, le=1000)
    idle_timeout_seconds: float = Field(default=1800.0, gt=0, le=86400)  # 30 min
    gc_interval_seconds: float = Field(default=60.0, gt=0, le=3600)


class RuntimeConfig(BaseSettings):
    """Agent runtime and workspace configuration.

    Attributes:
        model: Claude model identifier passed to the agent runtime
        executable: Explicit path to the claude executable (searched if None)
        users_base: Directory holding one workspace per user
        claude_home: Directory where the agent keeps projects and credentials
        isolate_workspaces: Run each worker in its own user workspace
        use_api_key: Keep ANTHROPIC_API_KEY in the agent environment
        default_timeout_ms: Hard timeout applied when a request sets none
        max_prompt_length: Maximum accepted prompt length in characters
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_RUNTIME__",
        extra="forbid",
    )

    model: str = Field(default="claude-sonnet-4-6")
    executable: str | None = Field(default=None)
    users_base: Path = Field(default=Path("/home/node/users"))
    claude_home: Path = Field(default_factory=lambda: Path.home() / ".claude")
    isolate_workspaces: bool = Field(default=True)
    use_api_key: bool = Field(default=False)
    default_timeout_ms: int = Field(default=120_000, ge=1, le=3_600_000)
    max_prompt_length: int = Field(default=200_000, ge=1)


class AuthConfig(BaseSettings):
    """Bearer token and Claude OAuth configuration.

    Attributes:
        secret: Shared HMAC secret used to sign bearer tokens
        token_ttl_seconds: Validity window of an issued bearer token
        oauth_client_id: OAuth client identifier of the claude CLI
        oauth_authorize_url: Authorization endpoint
        oauth_token_url: Token exchange endpoint
        oauth_redirect_uri: Redirect URI registered for the client
        oauth_scope: Space separated scopes requested at login
        oauth_state_ttl_seconds: Lifetime of a pending login attempt
        credentials_path: File where exchanged tokens are stored
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_AUTH__",
        extra="forbid",
    )

    secret: str = Field(default="fallback-secret")
    token_ttl_seconds: int = Field(default=300, ge=1, le=86400)
    oauth_client_id: str = Field(default="9d1c250a-e61b-44d9-88ed-5944d1962f5e")
    oauth_authorize_url: str = Field(default="https://claude.ai/oauth/authorize")
    oauth_token_url: str = Field(default="https://platform.claude.com/v1/oauth/token")
    oauth_redirect_uri: str = Field(
        default="https://platform.claude.com/oauth/code/callback"
    )
    oauth_scope: str = Field(
        default=(
            "org:create_api_key user:profile user:inference "
            "user:sessions:claude_code user:mcp_servers"
        )
    )
    oauth_state_ttl_seconds: int = Field(default=600, ge=1, le=86400)
    credentials_path: Path = Field(
        default_factory=lambda: Path.home() / ".claude" / ".credentials.json"
    )


class WebConfig(BaseSettings):
    """HTTP gateway configuration.

    Attributes:
        host: Bind host address
        port: Bind port number
        cors_origins: Allowed CORS origins
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_WEB__",
        extra="forbid",
    )

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class GatewayConfig(BaseSettings):
    """Root configuration for Agentgate.

    This is the main configuration class that aggregates all subsystem configurations.
    Configuration can be loaded from:
    1. TOML files (using load_config function)
    2. Environment variables (AGENTGATE_* prefix)
    3. Direct instantiation with keyword arguments

    Environment variable format for nested config:
        AGENTGATE_<SECTION>__<KEY>=value

    Example:
        AGENTGATE_SESSIONS__MAX_SESSIONS=50
        AGENTGATE_RUNTIME__MODEL="claude-opus-4-1"
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    web: WebConfig = Field(default_factory=WebConfig)


def load_config(config_path: Path | None = None) -> GatewayConfig:
    """Load configuration from TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./agentgate.toml (current directory)
    3. ~/.config/agentgate/config.toml (user config directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        GatewayConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If TOML file contains invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path = config_path
    else:
        search_paths = [
            Path.cwd() / "agentgate.toml",
            Path.home() / ".config" / "agentgate" / "config.toml",
        ]
        selected_path = None
        for path in search_paths:
            if path.exists():
                selected_path = path
                break

    if selected_path is not None:
        with open(selected_path, "rb") as f:
            toml_data = tomli.load(f)

    # Pydantic overlays environment variables on top of the TOML data
    try:
        return GatewayConfig(**toml_data)
    except Exception as e:
        if selected_path:
            raise ValueError(
                f"Invalid configuration in {selected_path}: {e}"
            ) from e
        else:
            raise ValueError(f"Invalid configuration: {e}") from e
