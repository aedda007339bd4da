"""
JWT helpers shared by the WebSocket handshake and the mobile REST API.

The platform's auth service issues the tokens; the gateway only verifies
them. sign_jwt() signs with the same secret and exists for tooling and tests.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from typing import Any

import jwt
from fastapi import HTTPException, status

from shared.config.settings import settings
from shared.config.logging import get_logger

logger = get_logger(__name__)

# Claims that may carry the subject, in lookup order
SUBJECT_CLAIMS = ("sub", "userId", "id")

# Tokens issued before the `type` claim existed carry none
ACCEPTED_TOKEN_TYPES = ("access", None)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _fingerprint(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()[:8]


def _decode_kwargs() -> dict[str, Any]:
    """Arguments for jwt.decode(); issuer and audience are checked only when configured."""
    kwargs: dict[str, Any] = {
        "algorithms": [settings.jwt_algorithm],
        "options": {"require": ["exp"], "verify_aud": bool(settings.jwt_audience)},
    }
    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    if settings.jwt_issuer:
        kwargs["issuer"] = settings.jwt_issuer
    return kwargs


def sign_jwt(
    payload: dict[str, Any],
    ttl_seconds: int | None = None,
    token_type: str = "access",
) -> str:
    """Sign `payload` (sub, role, permissions, ...) with the gateway secret."""
    if ttl_seconds is None:
        ttl_seconds = settings.jwt_access_token_expire_minutes * 60

    issued_at = int(time.time())
    claims: dict[str, Any] = dict(payload)
    claims.update(
        iat=issued_at,
        exp=issued_at + ttl_seconds,
        type=token_type,
        jti=uuid.uuid4().hex,
    )
    if settings.jwt_issuer:
        claims["iss"] = settings.jwt_issuer
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def extract_subject(claims: dict[str, Any]) -> str | None:
    """Return the subject id from whichever claim carries it."""
    for claim in SUBJECT_CLAIMS:
        value = claims.get(claim)
        if value is not None and str(value).strip():
            return str(value)
    return None


def verify_jwt(token: str) -> dict[str, Any]:
    """
    Decode `token` and return its claims.

    Raises HTTPException(401) when the signature, expiry, issuer or audience
    do not check out, when no subject claim is present, or when the token is
    not an access token. Callers on the WebSocket path translate the
    exception into a close code.
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret, **_decode_kwargs())
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("JWT rejected", error=str(e))
        raise _unauthorized("Invalid token")

    if extract_subject(claims) is None:
        raise _unauthorized("Invalid token: missing subject claim")

    token_type = claims.get("type")
    if token_type not in ACCEPTED_TOKEN_TYPES:
        jti = claims.get("jti")
        logger.warning(
            "JWT rejected: wrong token type",
            token_type=token_type,
            jti=_fingerprint(jti) if jti else None,
        )
        raise _unauthorized("Invalid token: invalid type claim")

    return claims


def get_bearer_token(authorization: str | None) -> str:
    """Pull the token out of an `Authorization: Bearer <token>` header value."""
    if not authorization:
        raise _unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise _unauthorized("Invalid Authorization header format. Expected: Bearer <token>")
    return token.strip()
