"""
Domain records shared by the evaluator, vault, credentials and audit trail.

These are plain dataclasses; persistence lives in caseguard.db.orm and the
stores translate between the two.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    """Current time as naive UTC, the convention for every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SubjectRole(str, Enum):
    """Platform roles. Authorization itself is attribute based."""

    SUPER_ADMIN = "super_admin"
    AUDITOR = "auditor"  # Anonymized logs and aggregate metrics only
    SECRETARY = "secretary"
    JUDGE = "judge"


class DecisionResult(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class ActiveGrant:
    """Attribute Store view of one non-expired grant."""

    attribute_name: str
    category: str
    level: int


@dataclass
class AttributeGrant:
    """An attribute granted to a subject by an administrator."""

    id: str
    subject_id: str
    attribute_name: str
    granted_by: str
    granted_at: datetime
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class Decision:
    """
    One policy decision.

    Created exactly once per evaluation and never updated. Retention is
    handled outside the core.
    """

    subject_id: str
    action: str
    resource_type: str
    result: DecisionResult
    reason: str
    timestamp: datetime
    resource_id: Optional[str] = None
    policy_name: Optional[str] = None
    context_metadata: Optional[dict[str, Any]] = None

    @property
    def allowed(self) -> bool:
        return self.result == DecisionResult.ALLOW


@dataclass(frozen=True)
class AnonymizedDecision:
    """Projection of a Decision that is safe for the auditor role."""

    user_hash: str
    action: str
    resource_type: str
    result: DecisionResult
    reason: Optional[str]
    timestamp: datetime
    hour_of_day: int
    day_of_week: int


@dataclass(frozen=True)
class AuditAccess:
    """Meta-audit entry: who looked at which audit view."""

    principal_id: str
    view_name: str
    params: dict[str, Any]
    accessed_at: datetime


@dataclass(frozen=True)
class Pseudonym:
    """Case-scoped stand-in for a real subject."""

    anon_id: str
    subject_id: str
    case_id: str
    created_at: datetime


@dataclass(frozen=True)
class Assignment:
    """Which pseudonym is attached to a case, and in what role."""

    case_id: str
    anon_actor_id: str
    role: str


@dataclass
class EphemeralCredential:
    """
    Single-use, time-boxed unlock credential for one case.

    Only the SHA-256 hash of the bearer token is kept.
    """

    token_hash: str
    case_id: str
    issued_to: str
    issued_at: datetime
    expires_at: datetime
    used_at: Optional[datetime] = None

    def is_usable(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now


@dataclass
class DecisionFilters:
    """Read-side filters for listing decisions."""

    action: Optional[str] = None
    result: Optional[DecisionResult] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class DailyDecisionMetrics:
    """Per-day counts over the decision log. No identities."""

    date: str
    access_allowed: int = 0
    access_denied: int = 0
    total_actions: int = 0
    case_operations: int = 0
    user_operations: int = 0
    document_operations: int = 0
    admin_operations: int = 0


@dataclass
class DailyJudgeActivity:
    """Distinct judges with any recorded decision on a day. Counts only."""

    date: str
    active_judges: int = 0
    total_judge_actions: int = 0
