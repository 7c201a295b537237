"""
caseguard Security Module

Includes:
- JWT authentication of callers
- The error taxonomy shared by every layer
"""

from caseguard.security.auth import (
    AuthenticationError,
    Principal,
    TokenPayload,
    TokenType,
    create_access_token,
    verify_access_token,
)
from caseguard.security.errors import (
    CaseGuardError,
    Forbidden,
    InvalidInput,
    NotFound,
    RateLimited,
    StoreUnavailable,
    Unauthenticated,
)

__all__ = [
    # Auth
    "AuthenticationError",
    "Principal",
    "TokenPayload",
    "TokenType",
    "create_access_token",
    "verify_access_token",
    # Errors
    "CaseGuardError",
    "Forbidden",
    "InvalidInput",
    "NotFound",
    "RateLimited",
    "StoreUnavailable",
    "Unauthenticated",
]
