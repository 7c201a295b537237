"""
Database repositories implementing the store contracts.

Each operation opens its own short session and transaction, so an audit
write commits regardless of what happens to the request that caused it.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from caseguard.abac.attributes import CATALOG
from caseguard.db.orm import (
    ABACAttribute,
    AuditAccessLog,
    CaseAssignmentRecord,
    EphemeralCredentialRecord,
    IdentityVaultEntry,
    PolicyEnforcementLog,
    UserAttribute,
    UserProfile,
)
from caseguard.models import (
    ActiveGrant,
    Assignment,
    AttributeGrant,
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

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


async def seed_catalog(session_factory: SessionFactory) -> int:
    """
    Insert catalog attributes that are not yet in abac_attributes.

    Returns:
        Number of rows inserted
    """
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(select(ABACAttribute.name))
            present = set(result.scalars().all())
            missing = [spec for spec in CATALOG.values() if spec.name.value not in present]
            for spec in missing:
                session.add(
                    ABACAttribute(
                        name=spec.name.value,
                        category=spec.category.value,
                        level=spec.level,
                        description=spec.description,
                    )
                )
    if missing:
        logger.info(f"Seeded {len(missing)} ABAC attributes")
    return len(missing)


class AttributeRepository(AttributeStore):
    """Repository for subjects and attribute grants."""

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def add_subject(
        self, subject_id: str, role: SubjectRole, full_name: Optional[str] = None
    ) -> None:
        """Create a subject profile."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add(UserProfile(id=subject_id, role=role.value, full_name=full_name))

    async def list_active_grants(self, subject_id: str) -> list[ActiveGrant]:
        now = self._clock()
        stmt = (
            select(ABACAttribute.name, ABACAttribute.category, ABACAttribute.level)
            .join(UserAttribute, UserAttribute.attribute_id == ABACAttribute.id)
            .where(
                UserAttribute.user_id == subject_id,
                or_(UserAttribute.expires_at.is_(None), UserAttribute.expires_at > now),
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [
                ActiveGrant(attribute_name=name, category=category, level=level)
                for name, category, level in result.all()
            ]

    async def get_subject_role(self, subject_id: str) -> Optional[SubjectRole]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserProfile.role).where(UserProfile.id == subject_id)
            )
            role = result.scalar_one_or_none()
        return SubjectRole(role) if role is not None else None

    async def add_grant(self, grant: AttributeGrant) -> AttributeGrant:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(ABACAttribute.id).where(ABACAttribute.name == grant.attribute_name)
                )
                attribute_id = result.scalar_one_or_none()
                if attribute_id is None:
                    raise KeyError(f"No attribute definition for {grant.attribute_name}")

                session.add(
                    UserAttribute(
                        id=grant.id,
                        user_id=grant.subject_id,
                        attribute_id=attribute_id,
                        granted_by=grant.granted_by,
                        granted_at=grant.granted_at,
                        expires_at=grant.expires_at,
                        reason=grant.reason,
                    )
                )
        return grant

    async def get_grant(self, grant_id: str) -> Optional[AttributeGrant]:
        stmt = (
            select(UserAttribute, ABACAttribute.name)
            .join(ABACAttribute, UserAttribute.attribute_id == ABACAttribute.id)
            .where(UserAttribute.id == grant_id)
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            return None

        record, name = row
        return AttributeGrant(
            id=record.id,
            subject_id=record.user_id,
            attribute_name=name,
            granted_by=record.granted_by,
            granted_at=record.granted_at,
            expires_at=record.expires_at,
            reason=record.reason,
        )

    async def expire_grant(self, grant_id: str, at: datetime) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(UserAttribute)
                    .where(UserAttribute.id == grant_id)
                    .values(expires_at=at)
                    .execution_options(synchronize_session=False)
                )
        return result.rowcount > 0


class CaseAssignmentRepository(CaseStore):
    """Repository for the active assignee of each case."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def get_assignment(self, case_id: str) -> Optional[Assignment]:
        async with self._session_factory() as session:
            record = await session.get(CaseAssignmentRecord, case_id)
        if record is None:
            return None
        return Assignment(case_id=record.case_id, anon_actor_id=record.anon_actor_id, role=record.role)

    async def set_assignment(self, assignment: Assignment) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(
                    CaseAssignmentRecord(
                        case_id=assignment.case_id,
                        anon_actor_id=assignment.anon_actor_id,
                        role=assignment.role,
                    )
                )


def _to_decision(record: PolicyEnforcementLog) -> Decision:
    return Decision(
        subject_id=record.user_id,
        action=record.action,
        resource_type=record.resource_type,
        resource_id=record.resource_id,
        result=DecisionResult(record.result),
        reason=record.reason,
        policy_name=record.policy_name,
        context_metadata=record.context_metadata,
        timestamp=record.timestamp,
    )


class AuditLogRepository(AuditSink):
    """Repository for the decision log and the meta-audit log."""

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def append(self, decision: Decision) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    PolicyEnforcementLog(
                        user_id=decision.subject_id,
                        action=decision.action,
                        resource_type=decision.resource_type,
                        resource_id=decision.resource_id,
                        result=decision.result.value,
                        reason=decision.reason,
                        policy_name=decision.policy_name,
                        context_metadata=decision.context_metadata,
                        timestamp=decision.timestamp,
                    )
                )

    async def append_access_log(
        self, principal_id: str, view_name: str, params: dict[str, Any]
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    AuditAccessLog(
                        accessor_id=principal_id,
                        view_accessed=view_name,
                        query_params=params,
                        accessed_at=self._clock(),
                    )
                )

    async def list_decisions(
        self, filters: DecisionFilters, offset: int, limit: int
    ) -> tuple[list[Decision], int]:
        conditions = []
        if filters.action:
            conditions.append(PolicyEnforcementLog.action.ilike(f"%{filters.action}%"))
        if filters.result:
            conditions.append(PolicyEnforcementLog.result == filters.result.value)
        if filters.start:
            conditions.append(PolicyEnforcementLog.timestamp >= filters.start)
        if filters.end:
            conditions.append(PolicyEnforcementLog.timestamp <= filters.end)
        count_stmt = select(func.count()).select_from(PolicyEnforcementLog)
        page_stmt = select(PolicyEnforcementLog)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            page_stmt = page_stmt.where(*conditions)

        async with self._session_factory() as session:
            total = await session.scalar(count_stmt)
            result = await session.execute(
                page_stmt
                .order_by(PolicyEnforcementLog.timestamp.desc(), PolicyEnforcementLog.id.desc())
                .offset(offset)
                .limit(limit)
            )
            rows = [_to_decision(r) for r in result.scalars().all()]
        return rows, total or 0

    async def daily_metrics(
        self, start: datetime, end: datetime
    ) -> list[DailyDecisionMetrics]:
        log = PolicyEnforcementLog
        day = func.date(log.timestamp).label("day")

        def _count(condition):
            return func.sum(case((condition, 1), else_=0))

        stmt = (
            select(
                day,
                _count(log.result == DecisionResult.ALLOW.value),
                _count(log.result == DecisionResult.DENY.value),
                func.count(),
                _count(log.action.like("case.%")),
                _count(log.action.like("user.%")),
                _count(log.action.like("doc.%")),
                _count(log.action.like("admin.%")),
            )
            .where(log.timestamp >= start, log.timestamp <= end)
            .group_by(day)
            .order_by(day.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [
                DailyDecisionMetrics(
                    # date() is a string on SQLite and a date on PostgreSQL
                    date=str(row[0]),
                    access_allowed=int(row[1] or 0),
                    access_denied=int(row[2] or 0),
                    total_actions=int(row[3] or 0),
                    case_operations=int(row[4] or 0),
                    user_operations=int(row[5] or 0),
                    document_operations=int(row[6] or 0),
                    admin_operations=int(row[7] or 0),
                )
                for row in result.all()
            ]

    async def daily_active_judges(
        self, start: datetime, end: datetime
    ) -> list[DailyJudgeActivity]:
        log = PolicyEnforcementLog
        day = func.date(log.timestamp).label("day")

        stmt = (
            select(day, func.count(func.distinct(log.user_id)), func.count())
            .join(UserProfile, UserProfile.id == log.user_id)
            .where(
                UserProfile.role == SubjectRole.JUDGE.value,
                log.timestamp >= start,
                log.timestamp <= end,
            )
            .group_by(day)
            .order_by(day.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [
                DailyJudgeActivity(
                    date=str(row[0]),
                    active_judges=int(row[1] or 0),
                    total_judge_actions=int(row[2] or 0),
                )
                for row in result.all()
            ]


def _to_pseudonym(record: IdentityVaultEntry) -> Pseudonym:
    return Pseudonym(
        anon_id=record.anon_id,
        subject_id=record.user_id,
        case_id=record.case_id,
        created_at=record.created_at,
    )


class IdentityVaultRepository(PseudonymStore):
    """Repository for case-scoped pseudonyms."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def get(self, subject_id: str, case_id: str) -> Optional[Pseudonym]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(IdentityVaultEntry).where(
                    IdentityVaultEntry.user_id == subject_id,
                    IdentityVaultEntry.case_id == case_id,
                )
            )
            record = result.scalar_one_or_none()
        return _to_pseudonym(record) if record is not None else None

    async def get_by_anon_id(self, anon_id: str) -> Optional[Pseudonym]:
        async with self._session_factory() as session:
            record = await session.get(IdentityVaultEntry, anon_id)
        return _to_pseudonym(record) if record is not None else None

    async def create(self, pseudonym: Pseudonym) -> Pseudonym:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        IdentityVaultEntry(
                            anon_id=pseudonym.anon_id,
                            user_id=pseudonym.subject_id,
                            case_id=pseudonym.case_id,
                            created_at=pseudonym.created_at,
                        )
                    )
            return pseudonym
        except IntegrityError:
            # Lost the race on (user_id, case_id); the winner's row stands
            existing = await self.get(pseudonym.subject_id, pseudonym.case_id)
            if existing is None:
                raise
            return existing


class CredentialRepository(CredentialStore):
    """Repository for ephemeral credentials."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def add(self, credential: EphemeralCredential) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    EphemeralCredentialRecord(
                        token_hash=credential.token_hash,
                        case_id=credential.case_id,
                        issued_to=credential.issued_to,
                        issued_at=credential.issued_at,
                        expires_at=credential.expires_at,
                        used_at=credential.used_at,
                    )
                )

    async def consume(
        self, token_hash: str, now: datetime, case_id: Optional[str] = None
    ) -> Optional[str]:
        record = EphemeralCredentialRecord
        stmt = (
            update(record)
            .where(
                record.token_hash == token_hash,
                record.used_at.is_(None),
                record.expires_at > now,
            )
            .values(used_at=now)
            .returning(record.case_id)
            .execution_options(synchronize_session=False)
        )
        if case_id is not None:
            stmt = stmt.where(record.case_id == case_id)

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                return result.scalar_one_or_none()

    async def list_issued_between(
        self, start: datetime, end: datetime
    ) -> list[EphemeralCredential]:
        record = EphemeralCredentialRecord
        async with self._session_factory() as session:
            result = await session.execute(
                select(record).where(record.issued_at >= start, record.issued_at <= end)
            )
            return [
                EphemeralCredential(
                    token_hash=r.token_hash,
                    case_id=r.case_id,
                    issued_to=r.issued_to,
                    issued_at=r.issued_at,
                    expires_at=r.expires_at,
                    used_at=r.used_at,
                )
                for r in result.scalars().all()
            ]
