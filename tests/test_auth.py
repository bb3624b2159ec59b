"""Tests for the bearer-token authentication gate."""

import os
import sys
import time

import jwt
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pipedrive_mcp.config import ConfigurationError, Settings
from pipedrive_mcp.mcp.auth import ALLOW, AuthGate

SECRET = "test-secret-with-enough-length-for-hs256"


def make_token(secret=SECRET, algorithm="HS256", **claims):
    return jwt.encode({"sub": "client", **claims}, secret, algorithm=algorithm)


class TestAuthDisabled:
    """Without a secret every request passes."""

    def test_no_header(self):
        assert AuthGate().check(None) == ALLOW

    def test_any_header(self):
        assert AuthGate().check("Basic whatever").allowed is True


class TestAuthEnabled:
    """With a secret only valid bearer tokens pass."""

    @pytest.fixture
    def gate(self):
        return AuthGate(secret=SECRET)

    def test_valid_token(self, gate):
        decision = gate.check(f"Bearer {make_token()}")
        assert decision.allowed is True

    def test_missing_header(self, gate):
        decision = gate.check(None)
        assert decision.allowed is False
        assert decision.message == "Unauthorized"

    def test_wrong_scheme(self, gate):
        decision = gate.check(f"Basic {make_token()}")
        assert decision.allowed is False
        assert decision.message == "Unauthorized"

    def test_empty_token(self, gate):
        assert gate.check("Bearer ").allowed is False

    def test_wrong_secret(self, gate):
        decision = gate.check(f"Bearer {make_token(secret='another-secret-of-sufficient-length')}")
        assert decision.allowed is False
        assert decision.message == "Unauthorized"

    def test_expired_token(self, gate):
        token = make_token(exp=int(time.time()) - 60)
        assert gate.check(f"Bearer {token}").allowed is False

    def test_garbage_token(self, gate):
        assert gate.check("Bearer not.a.jwt").allowed is False

    def test_algorithm_mismatch(self):
        """A token signed with another algorithm is rejected."""
        gate = AuthGate(secret=SECRET, algorithm="HS512")
        assert gate.check(f"Bearer {make_token(algorithm='HS256')}").allowed is False
        assert gate.check(f"Bearer {make_token(algorithm='HS512')}").allowed is True


class TestClaims:
    """Audience and issuer checks."""

    def test_audience_and_issuer_match(self):
        gate = AuthGate(secret=SECRET, audience="pipedrive", issuer="auth.example.com")
        token = make_token(aud="pipedrive", iss="auth.example.com")
        assert gate.check(f"Bearer {token}").allowed is True

    def test_audience_mismatch(self):
        gate = AuthGate(secret=SECRET, audience="pipedrive")
        assert gate.check(f"Bearer {make_token(aud='someone-else')}").allowed is False

    def test_issuer_mismatch(self):
        gate = AuthGate(secret=SECRET, issuer="auth.example.com")
        assert gate.check(f"Bearer {make_token(iss='evil.example.com')}").allowed is False

    def test_missing_audience_when_required(self):
        gate = AuthGate(secret=SECRET, audience="pipedrive")
        assert gate.check(f"Bearer {make_token()}").allowed is False

    def test_audience_ignored_when_not_configured(self):
        """Tokens may carry an audience the server does not check."""
        gate = AuthGate(secret=SECRET)
        assert gate.check(f"Bearer {make_token(aud='anything')}").allowed is True


class TestBootCheck:
    """AuthGate.from_settings verifies the boot token."""

    def _settings(self, **env):
        return Settings.from_env({
            "PIPEDRIVE_API_TOKEN": "token",
            "PIPEDRIVE_DOMAIN": "acme.pipedrive.com",
            **env,
        })

    def test_disabled_without_secret(self):
        gate = AuthGate.from_settings(self._settings())
        assert gate.enabled is False

    def test_valid_boot_token(self):
        gate = AuthGate.from_settings(self._settings(MCP_JWT_SECRET=SECRET, MCP_JWT_TOKEN=make_token()))
        assert gate.enabled is True

    def test_invalid_boot_token_refuses_to_start(self):
        settings = self._settings(
            MCP_JWT_SECRET=SECRET,
            MCP_JWT_TOKEN=make_token(secret="another-secret-of-sufficient-length"),
        )
        with pytest.raises(ConfigurationError, match="MCP_JWT_TOKEN"):
            AuthGate.from_settings(settings)
