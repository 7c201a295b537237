"""
Ephemeral case-unlock credentials.

A credential is a random bearer token bound to one case:
- single use: the first successful validate() consumes it
- time boxed: unusable after expires_at
- only the SHA-256 hash is stored, the raw token is returned once at issue
- no revoke; an unused credential simply expires
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from caseguard.models import EphemeralCredential, utcnow
from caseguard.security.errors import InvalidInput
from caseguard.stores.base import CredentialStore

logger = logging.getLogger(__name__)


# Per-case cookie name is TOKEN_COOKIE_PREFIX + case_id
TOKEN_COOKIE_PREFIX = "case_access_"

TOKEN_BYTES = 32
MAX_TOKEN_LENGTH = 256


@dataclass(frozen=True)
class IssuedCredential:
    """Raw token, handed to the holder exactly once."""

    token: str
    case_id: str
    expires_at: datetime


@dataclass(frozen=True)
class CredentialGrant:
    """Result of a successful validation."""

    case_id: str


def cookie_name(case_id: str) -> str:
    return f"{TOKEN_COOKIE_PREFIX}{case_id}"


class EphemeralCredentialService:
    """Issue and consume single-use case credentials."""

    def __init__(
        self,
        credential_store: CredentialStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = credential_store
        self._clock = clock

    @staticmethod
    def _hash_token(token: str) -> str:
        """Hash a token for secure storage."""
        return hashlib.sha256(token.encode()).hexdigest()

    async def issue(self, case_id: str, issued_to: str, ttl: timedelta) -> IssuedCredential:
        """
        Issue a credential for a case.

        Args:
            case_id: Case the credential unlocks
            issued_to: Subject the credential was issued to
            ttl: Lifetime, must be positive

        Returns:
            IssuedCredential carrying the raw token

        Raises:
            InvalidInput: If ttl is not positive
        """
        if ttl <= timedelta(0):
            raise InvalidInput("credential ttl must be positive")

        token = secrets.token_urlsafe(TOKEN_BYTES)
        now = self._clock()
        credential = EphemeralCredential(
            token_hash=self._hash_token(token),
            case_id=case_id,
            issued_to=issued_to,
            issued_at=now,
            expires_at=now + ttl,
        )
        await self._store.add(credential)

        logger.info(f"Issued case credential for case {case_id} to {issued_to}")
        return IssuedCredential(token=token, case_id=case_id, expires_at=credential.expires_at)

    async def validate(self, token: str, case_id: Optional[str] = None) -> Optional[CredentialGrant]:
        """
        Consume a credential.

        At most one caller ever gets a grant for a given token, however many
        validate it concurrently.

        Args:
            token: Raw bearer token
            case_id: When given, the credential must be bound to this case

        Returns:
            CredentialGrant, or None for malformed, unknown, used, expired or
            wrong-case tokens and on store errors
        """
        if not isinstance(token, str) or not token or len(token) > MAX_TOKEN_LENGTH:
            return None

        try:
            bound_case = await self._store.consume(self._hash_token(token), self._clock(), case_id)
        except Exception:
            logger.exception("Credential store error during validation")
            return None

        if bound_case is None:
            logger.warning("Rejected case credential (unknown, used, expired or wrong case)")
            return None

        logger.info(f"Case credential consumed for case {bound_case}")
        return CredentialGrant(case_id=bound_case)
