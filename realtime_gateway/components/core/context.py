"""
Handshake context for admission and audit logging.

Encapsulates the raw handshake data (token, origin) and the metadata used for
audit logging, so the gateway never touches the transport object directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from shared.config.logging import audit_ws_connection

if TYPE_CHECKING:
    from fastapi import WebSocket


# Format characters that can hide or reorder text in a terminal
_INVISIBLE = "".join(map(chr, [
    *range(0x200B, 0x2010),
    *range(0x202A, 0x202F),
    *range(0x2066, 0x206A),
    0xFEFF,
]))

_LOG_SAFE = str.maketrans(
    {"\n": "\\n", "\r": "\\r", "\t": "\\t"}
    | {chr(c): None for c in [*range(0x00, 0x09), 0x0B, 0x0C, *range(0x0E, 0x20), *range(0x7F, 0xA0)]}
    | {c: None for c in _INVISIBLE}
)


def sanitize_log_data(data: str, max_length: int = 100) -> str:
    """
    Make client-supplied text safe to put in a log line.

    Cut to `max_length` (marked with "..."), then escape line breaks and
    drop other control and invisible formatting characters.
    """
    clipped = data[:max_length].translate(_LOG_SAFE)
    return clipped + "..." if len(data) > max_length else clipped


def _token_from_cookie(cookie_header: str | None) -> str | None:
    if not cookie_header:
        return None
    for part in cookie_header.split(";"):
        name, _, value = part.strip().partition("=")
        if name == "token" and value:
            return value
    return None


@dataclass(frozen=True)
class Handshake:
    """
    Raw handshake presented by a connecting client.

    The token may arrive as a `token` query parameter, an
    `Authorization: Bearer` header, or a `token` cookie, in that order
    of precedence.
    """

    endpoint: str
    token: str | None = None
    origin: str | None = None
    client_host: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_websocket(cls, websocket: "WebSocket", endpoint: str) -> "Handshake":
        token = websocket.query_params.get("token")
        if not token:
            authorization = websocket.headers.get("authorization", "")
            if authorization.startswith("Bearer "):
                token = authorization.split(" ", 1)[1].strip()
        if not token:
            token = _token_from_cookie(websocket.headers.get("cookie"))

        return cls(
            endpoint=endpoint,
            token=token or None,
            origin=websocket.headers.get("origin"),
            client_host=websocket.client.host if websocket.client else None,
        )

    def audit(
        self,
        event_type: str,
        user_id: str | None = None,
        reason: str | None = None,
        **extra: Any,
    ) -> None:
        """Write an audit entry for this handshake."""
        audit_ws_connection(
            event_type=event_type,
            endpoint=self.endpoint,
            user_id=user_id,
            origin=self.origin,
            reason=reason,
            **extra,
        )
