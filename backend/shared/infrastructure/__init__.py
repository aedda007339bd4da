"""
Infrastructure module: request correlation.
"""

from shared.infrastructure.correlation import (
    CorrelationIdFilter,
    CorrelationIdMiddleware,
    bind_request_id,
    get_request_id,
)

__all__ = [
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
    "bind_request_id",
    "get_request_id",
]
