"""
Token verification strategies.

The gateway authenticates every connection and every HTTP request through an
AuthStrategy. The JWT strategy is used in production; the null strategy
exists so tests can admit fixed identities without signing tokens.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass

from fastapi import HTTPException

from shared.config.logging import get_logger
from shared.config.settings import Settings, get_settings
from shared.security.auth import verify_jwt
from realtime_gateway.components.auth.identity import SubscriberIdentity
from realtime_gateway.components.core.constants import WSCloseCode, validate_websocket_origin
from realtime_gateway.components.core.errors import AuthError

logger = get_logger(__name__)


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True, slots=True)
class AuthResult:
    """
    Result of an authentication attempt.

    Attributes:
        success: Whether authentication succeeded.
        identity: Verified identity if successful.
        error_message: Human-readable error message if failed.
        close_code: WebSocket close code to use if failed.
        audit_reason: Short reason code for audit logging.
    """

    success: bool
    identity: SubscriberIdentity | None = None
    error_message: str | None = None
    close_code: int = WSCloseCode.AUTH_FAILED
    audit_reason: str | None = None

    @classmethod
    def ok(cls, identity: SubscriberIdentity) -> "AuthResult":
        return cls(success=True, identity=identity)

    @classmethod
    def fail(
        cls,
        message: str,
        close_code: int = WSCloseCode.AUTH_FAILED,
        audit_reason: str = "auth_failed",
    ) -> "AuthResult":
        return cls(
            success=False,
            error_message=message,
            close_code=close_code,
            audit_reason=audit_reason,
        )

    @classmethod
    def forbidden(cls, message: str, audit_reason: str = "forbidden") -> "AuthResult":
        return cls(
            success=False,
            error_message=message,
            close_code=WSCloseCode.FORBIDDEN,
            audit_reason=audit_reason,
        )


# =============================================================================
# Strategy Interface
# =============================================================================


class AuthStrategy(ABC):
    """
    Abstract base class for token verification.

    Usage:
        strategy = JWTAuthStrategy()
        result = await strategy.authenticate(token, origin=origin)
        if result.success:
            identity = result.identity
    """

    @abstractmethod
    async def authenticate(
        self,
        token: str | None,
        origin: str | None = None,
    ) -> AuthResult:
        """
        Verify a raw token.

        Implementations must not raise; every failure is an AuthResult.
        """

    async def verify_token(self, token: str | None) -> SubscriberIdentity:
        """
        Verify a token and return its identity.

        Raises:
            AuthError: If the token is rejected.
        """
        result = await self.authenticate(token)
        if not result.success or result.identity is None:
            raise AuthError(
                result.error_message or "Authentication failed",
                audit_reason=result.audit_reason,
            )
        return result.identity


# =============================================================================
# JWT Authentication Strategy
# =============================================================================


class JWTAuthStrategy(AuthStrategy):
    """
    JWT token authentication.

    Steps: origin allow list, signature/expiry/issuer/audience via
    shared.security.auth.verify_jwt, then identity claims (subject, role,
    permissions).
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def authenticate(
        self,
        token: str | None,
        origin: str | None = None,
    ) -> AuthResult:
        if not validate_websocket_origin(origin, self._settings):
            return AuthResult.forbidden("Origin not allowed", audit_reason="invalid_origin")

        if not token:
            return AuthResult.fail("Authentication required", audit_reason="missing_token")

        try:
            claims = verify_jwt(token)
        except HTTPException as e:
            logger.warning("JWT validation failed", error=str(e.detail))
            return AuthResult.fail("Authentication failed", audit_reason="jwt_validation_failed")

        try:
            identity = SubscriberIdentity.from_claims(claims)
        except ValueError as e:
            logger.warning("JWT auth rejected - malformed identity claims", error=str(e))
            return AuthResult.fail("Authentication failed", audit_reason="malformed_claims")

        return AuthResult.ok(identity)


# =============================================================================
# Null Strategy
# =============================================================================


class NullAuthStrategy(AuthStrategy):
    """
    Strategy that maps tokens to preconfigured identities.

    Useful for testing and development. Unknown tokens fail.

        strategy = NullAuthStrategy({"admin-token": SubscriberIdentity("1", Role.ADMIN)})
    """

    def __init__(
        self,
        identities: dict[str, SubscriberIdentity] | None = None,
        delay: float = 0.0,
    ) -> None:
        self._identities = dict(identities or {})
        self._delay = delay

    def add(self, token: str, identity: SubscriberIdentity) -> None:
        self._identities[token] = identity

    async def authenticate(
        self,
        token: str | None,
        origin: str | None = None,
    ) -> AuthResult:
        if self._delay:
            await asyncio.sleep(self._delay)
        identity = self._identities.get(token or "")
        if identity is None:
            return AuthResult.fail("Authentication failed", audit_reason="unknown_token")
        return AuthResult.ok(identity)
