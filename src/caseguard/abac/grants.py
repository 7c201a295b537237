"""
Administration of user-attribute grants.

All validation happens before anything is written, so a rejected grant
leaves no trace in the attribute store.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from caseguard.abac.attributes import Action, UnknownAttributeError, parse_attribute_name
from caseguard.abac.evaluator import ABACEvaluator
from caseguard.abac.guards import ensure_grant_permitted
from caseguard.models import AttributeGrant, utcnow
from caseguard.security.errors import InvalidInput, NotFound
from caseguard.stores.base import AttributeStore

logger = logging.getLogger(__name__)


ABAC_RESOURCE = "user_attribute"


class AttributeGrantService:
    """Grant and revoke attributes on behalf of an administrator."""

    def __init__(
        self,
        evaluator: ABACEvaluator,
        attribute_store: AttributeStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._evaluator = evaluator
        self._attributes = attribute_store
        self._clock = clock

    async def grant(
        self,
        granter_id: str,
        subject_id: str,
        attribute_name: str,
        expires_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> AttributeGrant:
        """
        Grant an attribute to a subject.

        Args:
            granter_id: Administrator performing the grant
            subject_id: Subject receiving the attribute
            attribute_name: Catalog attribute name
            expires_at: Optional expiry (naive UTC, must be in the future)
            reason: Free-text justification

        Returns:
            The persisted grant

        Raises:
            Forbidden: Granter lacks admin.abac.manage, or an auditor would
                receive a forbidden attribute
            InvalidInput: Unknown attribute or expiry in the past
            NotFound: Unknown subject
        """
        await self._evaluator.enforce_permission(
            granter_id, Action.ADMIN_ABAC.value, ABAC_RESOURCE, resource_id=subject_id
        )

        try:
            attribute = parse_attribute_name(attribute_name)
        except UnknownAttributeError as e:
            raise InvalidInput(str(e)) from e

        now = self._clock()
        if expires_at is not None and expires_at <= now:
            raise InvalidInput("expires_at must be in the future")

        role = await self._attributes.get_subject_role(subject_id)
        if role is None:
            raise NotFound(f"subject {subject_id} not found")

        ensure_grant_permitted(role, attribute)

        grant = await self._attributes.add_grant(
            AttributeGrant(
                id=str(uuid.uuid4()),
                subject_id=subject_id,
                attribute_name=attribute.value,
                granted_by=granter_id,
                granted_at=now,
                expires_at=expires_at,
                reason=reason,
            )
        )
        logger.info(f"Attribute {attribute.value} granted to {subject_id} by {granter_id}")
        return grant

    async def revoke(self, granter_id: str, grant_id: str) -> None:
        """
        Revoke a grant by expiring it now.

        Raises:
            Forbidden: Granter lacks admin.abac.manage
            NotFound: Unknown grant
        """
        await self._evaluator.enforce_permission(
            granter_id, Action.ADMIN_ABAC.value, ABAC_RESOURCE, resource_id=grant_id
        )

        if not await self._attributes.expire_grant(grant_id, self._clock()):
            raise NotFound(f"grant {grant_id} not found")
        logger.info(f"Attribute grant {grant_id} revoked by {granter_id}")
