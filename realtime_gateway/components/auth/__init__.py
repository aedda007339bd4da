"""
Authentication: subscriber identities and token verification strategies.
"""

from realtime_gateway.components.auth.identity import Permission, Role, SubscriberIdentity
from realtime_gateway.components.auth.strategies import (
    AuthResult,
    AuthStrategy,
    JWTAuthStrategy,
    NullAuthStrategy,
)

__all__ = [
    "AuthResult",
    "AuthStrategy",
    "JWTAuthStrategy",
    "NullAuthStrategy",
    "Permission",
    "Role",
    "SubscriberIdentity",
]
