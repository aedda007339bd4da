"""
Security module: JWT verification and HTTP rate limiting.
"""

from shared.security.auth import (
    extract_subject,
    get_bearer_token,
    sign_jwt,
    verify_jwt,
)
from shared.security.rate_limit import limiter, rate_limit_exceeded_handler

__all__ = [
    "extract_subject",
    "get_bearer_token",
    "sign_jwt",
    "verify_jwt",
    "limiter",
    "rate_limit_exceeded_handler",
]
