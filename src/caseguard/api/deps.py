"""
FastAPI dependencies for the API.

Provides:
- Access to the process-wide service container
- JWT-based authentication
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from caseguard.security.auth import AuthenticationError, Principal, verify_access_token
from caseguard.security.errors import Unauthenticated
from caseguard.services import ServiceContainer

logger = logging.getLogger(__name__)


# HTTP Bearer token extractor
security = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    """Service container stored during app startup."""
    return request.app.state.container


Services = Annotated[ServiceContainer, Depends(get_container)]


async def get_current_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Principal:
    """
    Get the authenticated caller from the bearer JWT.

    Raises:
        Unauthenticated: If no token is given or it does not verify
    """
    if credentials is None:
        raise Unauthenticated("no bearer token")

    try:
        return verify_access_token(credentials.credentials)
    except AuthenticationError as e:
        logger.warning(f"JWT authentication failed: {e}")
        raise Unauthenticated(str(e)) from e


# Type alias for dependency injection
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
