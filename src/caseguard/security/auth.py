"""
Caller authentication for caseguard.

Implements:
- JWT bearer tokens (HS256 by default)
- The authenticated principal model

Authorization is not decided here. Every privileged operation goes through
the ABAC evaluator; the role claim is only used by the auditor guards.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel, Field

from caseguard.config import settings
from caseguard.models import SubjectRole, utcnow

logger = logging.getLogger(__name__)


class TokenType(str, Enum):
    """Types of JWT tokens."""
    ACCESS = "access"


class TokenPayload(BaseModel):
    """JWT token payload."""
    sub: str                          # Subject ID
    type: TokenType                   # Token type
    role: SubjectRole                 # Platform role
    exp: datetime                     # Expiration time
    iat: datetime = Field(default_factory=utcnow)  # Issued at
    jti: Optional[str] = None         # JWT ID


class Principal(BaseModel):
    """Authenticated caller."""
    id: str
    role: SubjectRole


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


def create_access_token(
    principal: Principal,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        principal: Principal to create token for
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    payload = TokenPayload(
        sub=principal.id,
        type=TokenType.ACCESS,
        role=principal.role,
        exp=utcnow() + expires_delta,
    )

    # jose expects epoch seconds for the registered time claims
    claims = payload.model_dump(mode="json")
    claims["exp"] = int((payload.exp - datetime(1970, 1, 1)).total_seconds())
    claims["iat"] = int((payload.iat - datetime(1970, 1, 1)).total_seconds())

    return jwt.encode(
        claims,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def verify_access_token(token: str) -> Principal:
    """
    Decode and validate an access token.

    Args:
        token: JWT token string

    Returns:
        The authenticated principal

    Raises:
        AuthenticationError: If token is invalid, expired, or wrong type
    """
    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning(f"JWT decode failed: {e}")
        raise AuthenticationError("Invalid or expired token") from e

    if claims.get("type") != TokenType.ACCESS.value:
        raise AuthenticationError("Invalid token type")

    try:
        return Principal(id=claims["sub"], role=SubjectRole(claims["role"]))
    except (KeyError, ValueError) as e:
        raise AuthenticationError("Malformed token claims") from e
