"""Tests for environment-driven configuration."""

import logging
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pipedrive_mcp.config import ConfigurationError, Settings, configure_logging

BASE_ENV = {
    "PIPEDRIVE_API_TOKEN": "token",
    "PIPEDRIVE_DOMAIN": "acme.pipedrive.com",
}


class TestSettings:
    """Parsing of environment variables into Settings."""

    def test_defaults(self):
        """Only credentials are required; everything else has a default."""
        settings = Settings.from_env(BASE_ENV)

        assert settings.transport == "stdio"
        assert settings.port == 3000
        assert settings.sse_path == "/sse"
        assert settings.message_path == "/message"
        assert settings.mcpo_port == 8080
        assert settings.rate_limit_min_time_ms == 250.0
        assert settings.rate_limit_max_concurrent == 2
        assert settings.auth_enabled is False
        assert settings.pipedrive_base_url == "https://acme.pipedrive.com/api/v1"

    def test_missing_token(self):
        """A missing API token refuses to start."""
        with pytest.raises(ConfigurationError, match="PIPEDRIVE_API_TOKEN"):
            Settings.from_env({"PIPEDRIVE_DOMAIN": "acme.pipedrive.com"})

    def test_missing_domain(self):
        """A missing domain refuses to start."""
        with pytest.raises(ConfigurationError, match="PIPEDRIVE_DOMAIN"):
            Settings.from_env({"PIPEDRIVE_API_TOKEN": "token"})

    def test_blank_values_count_as_missing(self):
        """Whitespace-only values are treated as unset."""
        with pytest.raises(ConfigurationError):
            Settings.from_env({**BASE_ENV, "PIPEDRIVE_API_TOKEN": "  "})

    def test_unknown_transport(self):
        """Only stdio, sse and mcpo are accepted."""
        with pytest.raises(ConfigurationError, match="Unknown transport type: http"):
            Settings.from_env({**BASE_ENV, "MCP_TRANSPORT": "http"})

    def test_transport_is_case_insensitive(self):
        settings = Settings.from_env({**BASE_ENV, "MCP_TRANSPORT": "SSE"})
        assert settings.transport == "sse"

    def test_secret_requires_boot_token(self):
        """Enabling auth without a boot token is a startup error."""
        with pytest.raises(ConfigurationError, match="MCP_JWT_TOKEN"):
            Settings.from_env({**BASE_ENV, "MCP_JWT_SECRET": "secret"})

    def test_blank_secret_is_rejected(self):
        """A whitespace-only secret never silently disables auth."""
        with pytest.raises(ConfigurationError, match="MCP_JWT_SECRET"):
            Settings.from_env({**BASE_ENV, "MCP_JWT_SECRET": "   ", "MCP_JWT_TOKEN": "boot"})

    def test_empty_secret_means_auth_disabled(self):
        settings = Settings.from_env({**BASE_ENV, "MCP_JWT_SECRET": ""})
        assert settings.jwt_secret is None

    def test_malformed_number(self):
        """Non-numeric values are rejected with the variable name."""
        with pytest.raises(ConfigurationError, match="MCP_PORT"):
            Settings.from_env({**BASE_ENV, "MCP_PORT": "three-thousand"})

    def test_rate_limit_concurrency_minimum(self):
        """The concurrency ceiling must be at least one."""
        with pytest.raises(ConfigurationError, match="PIPEDRIVE_RATE_LIMIT_MAX_CONCURRENT"):
            Settings.from_env({**BASE_ENV, "PIPEDRIVE_RATE_LIMIT_MAX_CONCURRENT": "0"})

    def test_paths_are_normalized(self):
        """Paths without a leading slash get one."""
        settings = Settings.from_env({**BASE_ENV, "MCP_SSE_PATH": "events", "MCP_ENDPOINT": "rpc"})
        assert settings.sse_path == "/events"
        assert settings.message_path == "/rpc"

    def test_domain_scheme_is_stripped(self):
        settings = Settings.from_env({**BASE_ENV, "PIPEDRIVE_DOMAIN": "https://acme.pipedrive.com/"})
        assert settings.pipedrive_domain == "acme.pipedrive.com"

    def test_full_auth_configuration(self):
        """All JWT settings are carried through."""
        settings = Settings.from_env({
            **BASE_ENV,
            "MCP_JWT_SECRET": "secret",
            "MCP_JWT_TOKEN": "boot",
            "MCP_JWT_ALGORITHM": "HS512",
            "MCP_JWT_AUDIENCE": "pipedrive",
            "MCP_JWT_ISSUER": "issuer",
        })
        assert settings.auth_enabled is True
        assert settings.jwt_algorithm == "HS512"
        assert settings.jwt_audience == "pipedrive"
        assert settings.jwt_issuer == "issuer"


class TestLogging:
    """Logging setup."""

    def test_configure_logging_installs_one_stderr_handler(self):
        """Repeated calls adjust the level without stacking handlers."""
        root = logging.getLogger()
        configure_logging("INFO")
        configure_logging("DEBUG")

        ours = [handler for handler in root.handlers if getattr(handler, "_pipedrive_mcp", False)]
        assert len(ours) == 1
        assert root.level == logging.DEBUG

        configure_logging("WARNING")
