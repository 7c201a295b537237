"""
Identity vault.

Maps real subject identities to case-scoped pseudonyms so judge-facing and
audit views never need the real identifier. The reverse mapping is only
reachable through resolve_identity(), which refuses auditors outright and
requires the evaluator to allow the reveal action.

Access failures surface as NotFound, never Forbidden, so a prober cannot
tell an unassigned case from a missing one.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from caseguard.abac.attributes import Action
from caseguard.abac.evaluator import ABACEvaluator
from caseguard.models import Assignment, Pseudonym, SubjectRole, utcnow
from caseguard.security.errors import NotFound
from caseguard.stores.base import AttributeStore, CaseStore, PseudonymStore

logger = logging.getLogger(__name__)


VAULT_RESOURCE = "identity_vault"


@dataclass(frozen=True)
class ResolvedIdentity:
    """Real subject behind a pseudonym."""

    subject_id: str
    case_id: str


@dataclass(frozen=True)
class AccessCheck:
    has_access: bool


class IdentityVault:
    """
    Case-scoped pseudonym management.

    Pseudonyms are random uuid4 values, not derived from the subject id, so
    they cannot be inverted without the vault's own store.
    """

    def __init__(
        self,
        pseudonym_store: PseudonymStore,
        case_store: CaseStore,
        attribute_store: AttributeStore,
        evaluator: ABACEvaluator,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize vault.

        Args:
            pseudonym_store: Vault storage
            case_store: Active case assignments
            attribute_store: Used to look up caller roles
            evaluator: Gates the reveal action
            clock: Time source for created_at
        """
        self._pseudonyms = pseudonym_store
        self._cases = case_store
        self._attributes = attribute_store
        self._evaluator = evaluator
        self._clock = clock

    async def get_or_create_pseudonym(self, subject_id: str, case_id: str) -> str:
        """
        Stable pseudonym for a (subject, case) pair.

        Two concurrent callers converge on the same anon id: the store keeps
        the first row and hands it back to the second.

        Returns:
            anon id
        """
        existing = await self._pseudonyms.get(subject_id, case_id)
        if existing is not None:
            return existing.anon_id

        stored = await self._pseudonyms.create(
            Pseudonym(
                anon_id=str(uuid.uuid4()),
                subject_id=subject_id,
                case_id=case_id,
                created_at=self._clock(),
            )
        )
        return stored.anon_id

    async def resolve_identity(self, anon_id: str, caller_id: str) -> Optional[ResolvedIdentity]:
        """
        Reveal the subject behind a pseudonym.

        Args:
            anon_id: Pseudonym to resolve
            caller_id: Subject asking for the reveal

        Returns:
            ResolvedIdentity, or None if the caller is an auditor, lacks the
            reveal permission, or the pseudonym is unknown
        """
        role = await self._attributes.get_subject_role(caller_id)
        if role == SubjectRole.AUDITOR:
            logger.warning(f"SECURITY VIOLATION: auditor {caller_id} attempted identity reveal")
            return None

        result = await self._evaluator.check_permission(
            caller_id, Action.ADMIN_REVEAL_IDENTITY.value, VAULT_RESOURCE
        )
        if not result.allowed:
            return None

        pseudonym = await self._pseudonyms.get_by_anon_id(anon_id)
        if pseudonym is None:
            return None

        logger.info(f"Identity revealed to {caller_id} for case {pseudonym.case_id}")
        return ResolvedIdentity(subject_id=pseudonym.subject_id, case_id=pseudonym.case_id)

    async def verify_access(self, subject_id: str, case_id: str) -> AccessCheck:
        """
        Whether the subject is the case's active assignee.

        Store errors resolve to no access.
        """
        try:
            pseudonym = await self._pseudonyms.get(subject_id, case_id)
            if pseudonym is None:
                return AccessCheck(has_access=False)

            assignment = await self._cases.get_assignment(case_id)
            return AccessCheck(
                has_access=assignment is not None
                and assignment.anon_actor_id == pseudonym.anon_id
            )
        except Exception:
            logger.exception("Vault access check failed; denying")
            return AccessCheck(has_access=False)

    async def require_access(self, subject_id: str, case_id: str) -> None:
        """
        Raises:
            NotFound: If verify_access() is false, whatever the reason
        """
        check = await self.verify_access(subject_id, case_id)
        if not check.has_access:
            logger.warning(f"Case access refused for {subject_id}")
            raise NotFound("case not visible to caller")

    async def assign_to_case(self, subject_id: str, case_id: str, role: str) -> str:
        """
        Make a subject the active assignee of a case.

        Returns:
            The subject's pseudonym for the case
        """
        anon_id = await self.get_or_create_pseudonym(subject_id, case_id)
        await self._cases.set_assignment(
            Assignment(case_id=case_id, anon_actor_id=anon_id, role=role)
        )
        logger.info(f"Case {case_id} assigned to pseudonym {anon_id} as {role}")
        return anon_id
