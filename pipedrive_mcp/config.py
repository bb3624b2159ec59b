"""
Configuration for the Pipedrive MCP server.

All settings come from environment variables (optionally loaded from a
``.env`` file) and are parsed once at start-up into an immutable ``Settings``
object. Anything that would make the server unusable - missing upstream
credentials, an unknown transport, a malformed number - raises
``ConfigurationError`` before a single request is served.
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

TRANSPORTS = ("stdio", "sse", "mcpo")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class ConfigurationError(Exception):
    """Raised when the process cannot start with the given configuration."""


def _optional(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _number(env: Mapping[str, str], name: str, default: float, minimum: float = 0) -> float:
    raw = _optional(env, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {raw!r}")
    return value


def _path(env: Mapping[str, str], name: str, default: str) -> str:
    value = _optional(env, name) or default
    return value if value.startswith("/") else f"/{value}"


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read-only after start-up."""

    pipedrive_api_token: str
    pipedrive_domain: str
    booking_field_key: Optional[str] = None
    request_timeout: float = 30.0

    transport: str = "stdio"
    host: str = "0.0.0.0"
    port: int = 3000
    sse_path: str = "/sse"
    message_path: str = "/message"
    mcpo_port: int = 8080

    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = None
    jwt_issuer: Optional[str] = None
    jwt_token: Optional[str] = None

    rate_limit_min_time_ms: float = 250.0
    rate_limit_max_concurrent: int = 2

    log_level: str = "INFO"

    @property
    def pipedrive_base_url(self) -> str:
        return f"https://{self.pipedrive_domain}/api/v1"

    @property
    def auth_enabled(self) -> bool:
        return self.jwt_secret is not None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Parsed settings

        Raises:
            ConfigurationError: If a required value is missing or malformed
        """
        if env is None:
            env = os.environ

        api_token = _optional(env, "PIPEDRIVE_API_TOKEN")
        if api_token is None:
            raise ConfigurationError("PIPEDRIVE_API_TOKEN environment variable is required")

        domain = _optional(env, "PIPEDRIVE_DOMAIN")
        if domain is None:
            raise ConfigurationError(
                "PIPEDRIVE_DOMAIN environment variable is required (e.g., 'acme.pipedrive.com')"
            )

        transport = (_optional(env, "MCP_TRANSPORT") or "stdio").lower()
        if transport not in TRANSPORTS:
            raise ConfigurationError(
                f"Unknown transport type: {transport}. Valid options: {', '.join(TRANSPORTS)}"
            )

        raw_secret = env.get("MCP_JWT_SECRET")
        if raw_secret and not raw_secret.strip():
            raise ConfigurationError("MCP_JWT_SECRET is set but blank; unset it to disable authentication")
        jwt_secret = _optional(env, "MCP_JWT_SECRET")
        jwt_token = _optional(env, "MCP_JWT_TOKEN")
        if jwt_secret is not None and jwt_token is None:
            raise ConfigurationError(
                "MCP_JWT_TOKEN environment variable is required when MCP_JWT_SECRET is set"
            )

        return cls(
            pipedrive_api_token=api_token,
            pipedrive_domain=domain.removeprefix("https://").rstrip("/"),
            booking_field_key=_optional(env, "PIPEDRIVE_BOOKING_FIELD_KEY"),
            request_timeout=_number(env, "PIPEDRIVE_TIMEOUT_SECONDS", 30.0, minimum=1),
            transport=transport,
            host=_optional(env, "MCP_HOST") or "0.0.0.0",
            port=int(_number(env, "MCP_PORT", 3000, minimum=1)),
            sse_path=_path(env, "MCP_SSE_PATH", "/sse"),
            message_path=_path(env, "MCP_ENDPOINT", "/message"),
            mcpo_port=int(_number(env, "MCPO_PORT", 8080, minimum=1)),
            jwt_secret=jwt_secret,
            jwt_algorithm=_optional(env, "MCP_JWT_ALGORITHM") or "HS256",
            jwt_audience=_optional(env, "MCP_JWT_AUDIENCE"),
            jwt_issuer=_optional(env, "MCP_JWT_ISSUER"),
            jwt_token=jwt_token,
            rate_limit_min_time_ms=_number(env, "PIPEDRIVE_RATE_LIMIT_MIN_TIME_MS", 250.0),
            rate_limit_max_concurrent=int(
                _number(env, "PIPEDRIVE_RATE_LIMIT_MAX_CONCURRENT", 2, minimum=1)
            ),
            log_level=(_optional(env, "LOG_LEVEL") or "INFO").upper(),
        )


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """Load ``.env`` (without overriding the real environment) and parse settings."""
    load_dotenv(dotenv_path)
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    """
    Send log records to stderr.

    stdout is the protocol channel in stdio mode, so nothing may log there.
    """
    root = logging.getLogger()
    if any(getattr(handler, "_pipedrive_mcp", False) for handler in root.handlers):
        root.setLevel(level)
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._pipedrive_mcp = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level)
