"""
Store contracts the core reads from and writes to.

The relational datastore, its query language and its row-level security are
outside the core. Everything the core needs from storage goes through these
narrow interfaces. Implementations:
- caseguard.stores.memory: in-process, for development and tests
- caseguard.db.repositories: SQLAlchemy async, for production
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from caseguard.models import (
    ActiveGrant,
    Assignment,
    AttributeGrant,
    DailyDecisionMetrics,
    DailyJudgeActivity,
    Decision,
    DecisionFilters,
    EphemeralCredential,
    Pseudonym,
    SubjectRole,
)


class AttributeStore(ABC):
    """User-attribute grants and subject roles."""

    @abstractmethod
    async def list_active_grants(self, subject_id: str) -> list[ActiveGrant]:
        """Grants whose expires_at is null or in the future."""

    @abstractmethod
    async def get_subject_role(self, subject_id: str) -> Optional[SubjectRole]:
        """Role of a subject, or None if the subject is unknown."""

    @abstractmethod
    async def add_grant(self, grant: AttributeGrant) -> AttributeGrant:
        """Persist a new grant."""

    @abstractmethod
    async def get_grant(self, grant_id: str) -> Optional[AttributeGrant]:
        """Look up a grant by id."""

    @abstractmethod
    async def expire_grant(self, grant_id: str, at: datetime) -> bool:
        """Set expires_at on a grant. Returns False if the grant is unknown."""


class CaseStore(ABC):
    """Case assignments, as seen by the vault."""

    @abstractmethod
    async def get_assignment(self, case_id: str) -> Optional[Assignment]:
        """Active assignment for a case, if any."""

    @abstractmethod
    async def set_assignment(self, assignment: Assignment) -> None:
        """Replace the active assignment for a case."""


class AuditSink(ABC):
    """Append-only decision log plus the meta-audit log."""

    @abstractmethod
    async def append(self, decision: Decision) -> None:
        """Append one decision."""

    @abstractmethod
    async def append_access_log(
        self, principal_id: str, view_name: str, params: dict[str, Any]
    ) -> None:
        """Record that a principal read an audit view."""

    @abstractmethod
    async def list_decisions(
        self, filters: DecisionFilters, offset: int, limit: int
    ) -> tuple[list[Decision], int]:
        """Newest first page of decisions and the total count."""

    @abstractmethod
    async def daily_metrics(
        self, start: datetime, end: datetime
    ) -> list[DailyDecisionMetrics]:
        """Per-day aggregate counts between start and end, newest first."""

    @abstractmethod
    async def daily_active_judges(
        self, start: datetime, end: datetime
    ) -> list[DailyJudgeActivity]:
        """Per-day distinct judges and their action count, newest first."""


class PseudonymStore(ABC):
    """Identity vault storage."""

    @abstractmethod
    async def get(self, subject_id: str, case_id: str) -> Optional[Pseudonym]:
        """Pseudonym for a (subject, case) pair."""

    @abstractmethod
    async def get_by_anon_id(self, anon_id: str) -> Optional[Pseudonym]:
        """Reverse lookup. Only the vault may call this."""

    @abstractmethod
    async def create(self, pseudonym: Pseudonym) -> Pseudonym:
        """
        Insert a pseudonym.

        If another pseudonym for the same (subject, case) already exists, the
        existing one is returned instead.
        """


class CredentialStore(ABC):
    """Ephemeral credential storage."""

    @abstractmethod
    async def add(self, credential: EphemeralCredential) -> None:
        """Persist a freshly issued credential."""

    @abstractmethod
    async def consume(
        self, token_hash: str, now: datetime, case_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Atomically mark a credential used.

        Succeeds only if used_at is null, expires_at > now and (when given)
        the case matches; the check and the write are one step.

        Returns:
            The bound case id, or None
        """

    @abstractmethod
    async def list_issued_between(
        self, start: datetime, end: datetime
    ) -> list[EphemeralCredential]:
        """Credentials issued in [start, end]."""
