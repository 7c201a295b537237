"""
Auditor guards.

The auditor role may only ever see anonymized logs and aggregate metrics.
Two independent checks enforce that it never holds vault, user-management
or case-content attributes:

- ensure_grant_permitted() rejects the grant before it is persisted
- auditor_violation() makes the evaluator deny even if a bad grant exists
"""

import logging
from typing import Iterable, Optional

from caseguard.abac.attributes import CATALOG, AttributeName, Capability
from caseguard.models import SubjectRole
from caseguard.security.errors import Forbidden

logger = logging.getLogger(__name__)


AUDITOR_FORBIDDEN_CAPABILITIES = frozenset({
    Capability.VAULT,
    Capability.USER_MANAGEMENT,
    Capability.CASE,
})


def ensure_grant_permitted(role: Optional[SubjectRole], attribute: AttributeName) -> None:
    """
    Grant-time guard.

    Args:
        role: Role of the subject receiving the attribute
        attribute: Attribute being granted

    Raises:
        Forbidden: If an auditor would receive a forbidden attribute
    """
    if role != SubjectRole.AUDITOR:
        return

    capability = CATALOG[attribute].capability
    if capability in AUDITOR_FORBIDDEN_CAPABILITIES:
        logger.warning(
            f"SECURITY VIOLATION: auditor role cannot hold {capability.value} "
            f"attributes. Attempted: {attribute.value}"
        )
        raise Forbidden(f"auditor cannot be granted {attribute.value}")


def auditor_violation(
    role: Optional[SubjectRole],
    held: Iterable[AttributeName],
    required: Optional[AttributeName],
) -> Optional[AttributeName]:
    """
    Evaluation-time guard.

    Returns:
        The offending attribute if an auditor holds or needs a forbidden
        attribute, None otherwise
    """
    if role != SubjectRole.AUDITOR:
        return None

    if required is not None and CATALOG[required].capability in AUDITOR_FORBIDDEN_CAPABILITIES:
        return required

    for name in held:
        if CATALOG[name].capability in AUDITOR_FORBIDDEN_CAPABILITIES:
            return name
    return None
