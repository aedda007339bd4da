"""
HTTP rate limiting for the mobile API (slowapi).

Authenticated calls are bucketed per bearer token so that many handsets
behind one carrier NAT do not share a budget; anonymous calls fall back to
the client address.

    @router.get("/things")
    @limiter.limit(settings.mobile_rate_limit)
    async def things(request: Request): ...

The decorated endpoint must accept a `request: Request` argument.
"""

import hashlib

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from shared.config.logging import audit_rate_limit_event


def rate_limit_key(request: Request) -> str:
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme == "Bearer" and token.strip():
        return "token:" + hashlib.sha256(token.strip().encode()).hexdigest()[:16]
    return "ip:" + get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with the violated limit echoed in `retry_after` and a Retry-After header."""
    limit = getattr(exc, "limit", None)
    window = limit.limit.get_expiry() if limit is not None else 0
    audit_rate_limit_event(
        "http",
        rate_limit_key(request),
        limit=limit.limit.amount if limit is not None else 0,
        window=window,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please try again later.",
            "retry_after": exc.detail,
        },
        headers={"Retry-After": str(window or 60)},
    )
