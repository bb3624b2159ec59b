"""Bearer-token (JWT) authentication for the SSE transport."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt

from pipedrive_mcp.config import ConfigurationError, Settings

logger = logging.getLogger(__name__)

UNAUTHORIZED = "Unauthorized"


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    message: Optional[str] = None


ALLOW = AuthDecision(allowed=True)
DENY = AuthDecision(allowed=False, message=UNAUTHORIZED)


class AuthGate:
    """
    Stateless per-request check of the ``Authorization`` header.

    Authentication is opt-in: without a secret every request passes. With a
    secret, the header must hold ``Bearer <jwt>`` signed with that secret and
    algorithm, and its ``aud``/``iss`` claims must match when configured.
    Every failure produces the same denial so callers learn nothing about
    why a token was rejected.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.issuer = issuer

    @property
    def enabled(self) -> bool:
        return self.secret is not None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthGate":
        """
        Build the gate and run the boot-time self check.

        Raises:
            ConfigurationError: If a secret is set but the boot token is
                missing or does not verify
        """
        gate = cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
        if gate.enabled:
            if not settings.jwt_token:
                raise ConfigurationError(
                    "MCP_JWT_TOKEN environment variable is required when MCP_JWT_SECRET is set"
                )
            try:
                gate.verify(settings.jwt_token)
            except jwt.PyJWTError as exc:
                raise ConfigurationError(f"Failed to verify MCP_JWT_TOKEN: {exc}") from exc
            logger.info("JWT authentication enabled (%s)", gate.algorithm)
        return gate

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode and verify a token.

        Raises:
            jwt.PyJWTError: On any signature, expiry or claim problem
        """
        return jwt.decode(
            token,
            self.secret,
            algorithms=[self.algorithm],
            audience=self.audience,
            issuer=self.issuer,
            options={"verify_aud": self.audience is not None},
        )

    def check(self, authorization: Optional[str]) -> AuthDecision:
        """
        Decide whether a request may proceed.

        Args:
            authorization: Raw ``Authorization`` header value, if any

        Returns:
            ALLOW or DENY
        """
        if not self.enabled:
            return ALLOW
        if not authorization:
            return DENY

        scheme, _, token = authorization.partition(" ")
        token = token.strip()
        if scheme != "Bearer" or not token:
            return DENY

        try:
            self.verify(token)
        except jwt.PyJWTError as exc:
            logger.debug("Rejected bearer token: %s", exc)
            return DENY
        return ALLOW
