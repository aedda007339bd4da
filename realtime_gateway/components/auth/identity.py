"""
Subscriber identity derived from a verified token.

Identities are rebuilt from claims on every connection and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from shared.security.auth import extract_subject


class Role(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    COURIER = "courier"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Parse a role claim, case-insensitively. Raises ValueError."""
        if not isinstance(value, str):
            raise ValueError(f"role claim must be a string, got {type(value).__name__}")
        return cls(value.strip().lower())


class Permission:
    """Permission strings recognised by the gateway."""

    READ_ANY_ORDER = "orders:read:any"
    PUBLISH_EVENTS = "events:publish"


@dataclass(frozen=True, slots=True)
class SubscriberIdentity:
    """
    Who is on the other end of a connection or request.

    Attributes:
        id: Subject id from the token (string, whatever the issuer uses).
        role: One of customer, restaurant, courier, admin.
        permissions: Extra grants carried by the token.
        email: Optional email claim, used for display only.
        restaurant_slug: Restaurant the identity belongs to (restaurant staff).
    """

    id: str
    role: Role
    permissions: frozenset[str] = field(default_factory=frozenset)
    email: str | None = None
    restaurant_slug: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_courier(self) -> bool:
        return self.role is Role.COURIER

    def has_permission(self, permission: str) -> bool:
        return self.is_admin or permission in self.permissions

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "SubscriberIdentity":
        """
        Build an identity from verified JWT claims.

        Accepts either a `role` string or a `roles` list (first entry wins).

        Raises:
            ValueError: If the subject or role claim is missing or malformed.
        """
        subject = extract_subject(claims)
        if subject is None:
            raise ValueError("missing subject claim")

        raw_role = claims.get("role")
        if raw_role is None:
            roles = claims.get("roles")
            if isinstance(roles, list) and roles:
                raw_role = roles[0]
        if raw_role is None:
            raise ValueError("missing role claim")
        role = Role.parse(raw_role)

        permissions = claims.get("permissions") or []
        if not isinstance(permissions, (list, tuple)):
            raise ValueError("permissions claim must be a list")

        return cls(
            id=subject,
            role=role,
            permissions=frozenset(str(p) for p in permissions),
            email=claims.get("email"),
            restaurant_slug=claims.get("restaurant_slug") or claims.get("restaurantSlug"),
        )
