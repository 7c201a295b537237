"""
In-process store implementations.

Used by the memory backend (development) and by tests, which build a fresh
set per test case. All state lives in the instance; nothing is module
global. Mutations take a threading.Lock so that a check and the write that
depends on it are one step, whether callers are tasks or threads.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Optional

from caseguard.abac.attributes import CATALOG
from caseguard.models import (
    ActiveGrant,
    Assignment,
    AttributeGrant,
    AuditAccess,
    DailyDecisionMetrics,
    DailyJudgeActivity,
    Decision,
    DecisionFilters,
    DecisionResult,
    EphemeralCredential,
    Pseudonym,
    SubjectRole,
    utcnow,
)
from caseguard.stores.base import (
    AttributeStore,
    AuditSink,
    CaseStore,
    CredentialStore,
    PseudonymStore,
)


class InMemoryAttributeStore(AttributeStore):
    """Subjects, attribute definitions and grants held in dicts."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._lock = threading.Lock()
        self._roles: dict[str, SubjectRole] = {}
        self._grants: dict[str, AttributeGrant] = {}
        # name -> (category, level); seeded from the catalog
        self._attributes: dict[str, tuple[str, int]] = {
            spec.name.value: (spec.category.value, spec.level)
            for spec in CATALOG.values()
        }

    def add_subject(self, subject_id: str, role: SubjectRole) -> None:
        with self._lock:
            self._roles[subject_id] = role

    def define_attribute(self, name: str, category: str, level: int) -> None:
        """Add an attribute definition outside the catalog (legacy rows)."""
        with self._lock:
            self._attributes[name] = (category, level)

    async def list_active_grants(self, subject_id: str) -> list[ActiveGrant]:
        now = self._clock()
        with self._lock:
            grants = [
                g for g in self._grants.values()
                if g.subject_id == subject_id and g.is_active(now)
            ]
            return [
                ActiveGrant(
                    attribute_name=g.attribute_name,
                    category=self._attributes[g.attribute_name][0],
                    level=self._attributes[g.attribute_name][1],
                )
                for g in grants
            ]

    async def get_subject_role(self, subject_id: str) -> Optional[SubjectRole]:
        return self.role_of(subject_id)

    def role_of(self, subject_id: str) -> Optional[SubjectRole]:
        with self._lock:
            return self._roles.get(subject_id)

    async def add_grant(self, grant: AttributeGrant) -> AttributeGrant:
        with self._lock:
            if grant.attribute_name not in self._attributes:
                raise KeyError(f"No attribute definition for {grant.attribute_name}")
            self._grants[grant.id] = grant
        return grant

    async def get_grant(self, grant_id: str) -> Optional[AttributeGrant]:
        with self._lock:
            return self._grants.get(grant_id)

    async def expire_grant(self, grant_id: str, at: datetime) -> bool:
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None:
                return False
            grant.expires_at = at
            return True


class InMemoryCaseStore(CaseStore):
    """Active assignment per case."""

    def __init__(self):
        self._lock = threading.Lock()
        self._assignments: dict[str, Assignment] = {}

    async def get_assignment(self, case_id: str) -> Optional[Assignment]:
        with self._lock:
            return self._assignments.get(case_id)

    async def set_assignment(self, assignment: Assignment) -> None:
        with self._lock:
            self._assignments[assignment.case_id] = assignment


def _accumulate(metrics: DailyDecisionMetrics, decision: Decision) -> None:
    metrics.total_actions += 1
    if decision.result == DecisionResult.ALLOW:
        metrics.access_allowed += 1
    else:
        metrics.access_denied += 1

    prefix = decision.action.split(".", 1)[0]
    if prefix == "case":
        metrics.case_operations += 1
    elif prefix == "user":
        metrics.user_operations += 1
    elif prefix == "doc":
        metrics.document_operations += 1
    elif prefix == "admin":
        metrics.admin_operations += 1


class InMemoryAuditSink(AuditSink):
    """
    Append-only lists of decisions and audit-view accesses.

    role_of plays the part of the join to subject profiles; without it no
    subject counts as a judge.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        role_of: Optional[Callable[[str], Optional[SubjectRole]]] = None,
    ):
        self._clock = clock
        self._role_of = role_of or (lambda subject_id: None)
        self._lock = threading.Lock()
        self.decisions: list[Decision] = []
        self.access_log: list[AuditAccess] = []

    async def append(self, decision: Decision) -> None:
        with self._lock:
            self.decisions.append(decision)

    async def append_access_log(
        self, principal_id: str, view_name: str, params: dict[str, Any]
    ) -> None:
        entry = AuditAccess(
            principal_id=principal_id,
            view_name=view_name,
            params=dict(params),
            accessed_at=self._clock(),
        )
        with self._lock:
            self.access_log.append(entry)

    async def list_decisions(
        self, filters: DecisionFilters, offset: int, limit: int
    ) -> tuple[list[Decision], int]:
        with self._lock:
            rows = list(self.decisions)

        if filters.action:
            needle = filters.action.lower()
            rows = [d for d in rows if needle in d.action.lower()]
        if filters.result:
            rows = [d for d in rows if d.result == filters.result]
        if filters.start:
            rows = [d for d in rows if d.timestamp >= filters.start]
        if filters.end:
            rows = [d for d in rows if d.timestamp <= filters.end]

        rows.sort(key=lambda d: d.timestamp, reverse=True)
        return rows[offset:offset + limit], len(rows)

    async def daily_metrics(
        self, start: datetime, end: datetime
    ) -> list[DailyDecisionMetrics]:
        with self._lock:
            rows = [d for d in self.decisions if start <= d.timestamp <= end]

        by_day: dict[str, DailyDecisionMetrics] = {}
        for decision in rows:
            day = decision.timestamp.date().isoformat()
            metrics = by_day.setdefault(day, DailyDecisionMetrics(date=day))
            _accumulate(metrics, decision)

        return [by_day[day] for day in sorted(by_day, reverse=True)]

    async def daily_active_judges(
        self, start: datetime, end: datetime
    ) -> list[DailyJudgeActivity]:
        with self._lock:
            rows = [d for d in self.decisions if start <= d.timestamp <= end]

        judges: dict[str, set[str]] = {}
        actions: dict[str, int] = {}
        for decision in rows:
            if self._role_of(decision.subject_id) != SubjectRole.JUDGE:
                continue
            day = decision.timestamp.date().isoformat()
            judges.setdefault(day, set()).add(decision.subject_id)
            actions[day] = actions.get(day, 0) + 1

        return [
            DailyJudgeActivity(
                date=day, active_judges=len(judges[day]), total_judge_actions=actions[day]
            )
            for day in sorted(judges, reverse=True)
        ]


class InMemoryPseudonymStore(PseudonymStore):
    """Vault mapping with a uniqueness rule on (subject, case)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_pair: dict[tuple[str, str], Pseudonym] = {}
        self._by_anon: dict[str, Pseudonym] = {}

    async def get(self, subject_id: str, case_id: str) -> Optional[Pseudonym]:
        with self._lock:
            return self._by_pair.get((subject_id, case_id))

    async def get_by_anon_id(self, anon_id: str) -> Optional[Pseudonym]:
        with self._lock:
            return self._by_anon.get(anon_id)

    async def create(self, pseudonym: Pseudonym) -> Pseudonym:
        key = (pseudonym.subject_id, pseudonym.case_id)
        with self._lock:
            existing = self._by_pair.get(key)
            if existing is not None:
                return existing
            self._by_pair[key] = pseudonym
            self._by_anon[pseudonym.anon_id] = pseudonym
            return pseudonym


class InMemoryCredentialStore(CredentialStore):
    """Credentials keyed by token hash."""

    def __init__(self):
        self._lock = threading.Lock()
        self._credentials: dict[str, EphemeralCredential] = {}

    async def add(self, credential: EphemeralCredential) -> None:
        with self._lock:
            self._credentials[credential.token_hash] = credential

    async def consume(
        self, token_hash: str, now: datetime, case_id: Optional[str] = None
    ) -> Optional[str]:
        with self._lock:
            credential = self._credentials.get(token_hash)
            if credential is None or not credential.is_usable(now):
                return None
            if case_id is not None and credential.case_id != case_id:
                return None
            credential.used_at = now
            return credential.case_id

    async def list_issued_between(
        self, start: datetime, end: datetime
    ) -> list[EphemeralCredential]:
        with self._lock:
            return [
                c for c in self._credentials.values()
                if start <= c.issued_at <= end
            ]
