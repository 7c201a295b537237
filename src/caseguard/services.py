"""
Service wiring.

Builds one set of stores and services per process. The HTTP layer reads the
container from app.state; tests build their own with build_memory_container().
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from limits.storage import MemoryStorage
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from caseguard.abac.evaluator import ABACEvaluator
from caseguard.abac.grants import AttributeGrantService
from caseguard.audit.ratelimit import RateLimiter
from caseguard.audit.recorder import AuditRecorder
from caseguard.audit.reporting import AuditReportingService
from caseguard.config import Settings
from caseguard.models import utcnow
from caseguard.stores.base import (
    AttributeStore,
    AuditSink,
    CaseStore,
    CredentialStore,
    PseudonymStore,
)
from caseguard.vault.credentials import EphemeralCredentialService
from caseguard.vault.identity import IdentityVault

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Stores plus the services built on top of them."""

    settings: Settings
    attribute_store: AttributeStore
    case_store: CaseStore
    audit_sink: AuditSink
    pseudonym_store: PseudonymStore
    credential_store: CredentialStore
    recorder: AuditRecorder
    evaluator: ABACEvaluator
    grants: AttributeGrantService
    vault: IdentityVault
    credentials: EphemeralCredentialService
    rate_limiter: RateLimiter
    reporting: AuditReportingService
    engine: Optional[Any] = field(default=None)
    session_factory: Optional[Any] = field(default=None)

    async def close(self) -> None:
        """Flush pending audit writes and release the database engine."""
        await self.recorder.drain()
        if self.engine is not None:
            await self.engine.dispose()


def build_container(
    settings: Settings,
    attribute_store: AttributeStore,
    case_store: CaseStore,
    audit_sink: AuditSink,
    pseudonym_store: PseudonymStore,
    credential_store: CredentialStore,
    clock: Callable[[], datetime] = utcnow,
    rate_limiter: Optional[RateLimiter] = None,
    engine: Optional[Any] = None,
    session_factory: Optional[Any] = None,
) -> ServiceContainer:
    """Assemble services over an existing set of stores."""
    recorder = AuditRecorder(audit_sink, timeout_seconds=settings.audit_write_timeout_seconds)
    evaluator = ABACEvaluator(attribute_store, recorder, clock)
    limiter = rate_limiter or RateLimiter(MemoryStorage())

    return ServiceContainer(
        settings=settings,
        attribute_store=attribute_store,
        case_store=case_store,
        audit_sink=audit_sink,
        pseudonym_store=pseudonym_store,
        credential_store=credential_store,
        recorder=recorder,
        evaluator=evaluator,
        grants=AttributeGrantService(evaluator, attribute_store, clock),
        vault=IdentityVault(pseudonym_store, case_store, attribute_store, evaluator, clock),
        credentials=EphemeralCredentialService(credential_store, clock),
        rate_limiter=limiter,
        reporting=AuditReportingService(
            audit_sink, credential_store, evaluator, limiter, recorder, settings, clock
        ),
        engine=engine,
        session_factory=session_factory,
    )


def build_memory_container(
    settings: Settings, clock: Callable[[], datetime] = utcnow
) -> ServiceContainer:
    """In-process stores. Development and tests only."""
    from caseguard.stores.memory import (
        InMemoryAttributeStore,
        InMemoryAuditSink,
        InMemoryCaseStore,
        InMemoryCredentialStore,
        InMemoryPseudonymStore,
    )

    attributes = InMemoryAttributeStore(clock)
    return build_container(
        settings,
        attribute_store=attributes,
        case_store=InMemoryCaseStore(),
        audit_sink=InMemoryAuditSink(clock, attributes.role_of),
        pseudonym_store=InMemoryPseudonymStore(),
        credential_store=InMemoryCredentialStore(),
        clock=clock,
    )


def build_database_container(settings: Settings) -> ServiceContainer:
    """SQLAlchemy-backed stores over settings.database_url."""
    from caseguard.db.repositories import (
        AttributeRepository,
        AuditLogRepository,
        CaseAssignmentRepository,
        CredentialRepository,
        IdentityVaultRepository,
    )

    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
    )
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    return build_container(
        settings,
        attribute_store=AttributeRepository(session_factory),
        case_store=CaseAssignmentRepository(session_factory),
        audit_sink=AuditLogRepository(session_factory),
        pseudonym_store=IdentityVaultRepository(session_factory),
        credential_store=CredentialRepository(session_factory),
        engine=engine,
        session_factory=session_factory,
    )


def build_default_container(settings: Settings) -> ServiceContainer:
    """Container for the configured store backend."""
    if settings.store_backend == "memory":
        logger.warning("Using in-memory stores; data is lost on restart")
        return build_memory_container(settings)
    return build_database_container(settings)
