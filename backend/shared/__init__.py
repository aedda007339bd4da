"""
Shared module for code used by the realtime gateway and its tooling.

STRUCTURE:
- shared.config: settings.py (pydantic-settings), logging.py (structured logging)
- shared.infrastructure: correlation.py (request correlation ids)
- shared.security: auth.py (JWT verification), rate_limit.py (slowapi limiter)
- shared.utils: exceptions.py (HTTP exceptions with auto-logging)

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.logging import get_logger
    from shared.security.auth import verify_jwt
    from shared.utils.exceptions import NotFoundError, ForbiddenError
"""
