"""
Pytest configuration and shared fixtures for caseguard tests.

Every fixture builds fresh in-memory stores, so no state leaks between tests.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

import pytest

from caseguard.abac.evaluator import ABACEvaluator
from caseguard.audit.recorder import AuditRecorder
from caseguard.config import Settings
from caseguard.models import AttributeGrant, SubjectRole
from caseguard.services import ServiceContainer, build_memory_container
from caseguard.stores.memory import (
    InMemoryAttributeStore,
    InMemoryAuditSink,
    InMemoryCaseStore,
    InMemoryCredentialStore,
    InMemoryPseudonymStore,
)

TEST_SECRET = "test-secret-key-for-caseguard-unit-tests-0123456789"


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to a Sunday afternoon."""
    return FakeClock(datetime(2024, 3, 10, 13, 0, 0))


@pytest.fixture
def test_settings() -> Settings:
    """Settings for the memory backend."""
    return Settings(
        environment="test",
        secret_key=TEST_SECRET,
        store_backend="memory",
        credential_cookie_secure=False,
        audit_write_timeout_seconds=0.5,
    )


@pytest.fixture
def attribute_store(clock) -> InMemoryAttributeStore:
    return InMemoryAttributeStore(clock)


@pytest.fixture
def audit_sink(clock, attribute_store) -> InMemoryAuditSink:
    return InMemoryAuditSink(clock, attribute_store.role_of)


@pytest.fixture
def case_store() -> InMemoryCaseStore:
    return InMemoryCaseStore()


@pytest.fixture
def pseudonym_store() -> InMemoryPseudonymStore:
    return InMemoryPseudonymStore()


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def recorder(audit_sink) -> AuditRecorder:
    return AuditRecorder(audit_sink, timeout_seconds=0.5)


@pytest.fixture
def evaluator(attribute_store, recorder, clock) -> ABACEvaluator:
    return ABACEvaluator(attribute_store, recorder, clock)


@pytest.fixture
def container(test_settings, clock) -> ServiceContainer:
    """Fully wired services over fresh in-memory stores."""
    return build_memory_container(test_settings, clock)


@pytest.fixture
def make_subject(clock):
    """
    Factory that registers a subject and grants it attributes directly.

    Grants go straight to the store, bypassing the grant service, so tests
    can also plant grants the service would refuse.
    """

    async def _make(
        store: InMemoryAttributeStore,
        role: SubjectRole,
        *attributes: str,
        subject_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> str:
        subject_id = subject_id or str(uuid.uuid4())
        store.add_subject(subject_id, role)
        for name in attributes:
            await store.add_grant(
                AttributeGrant(
                    id=str(uuid.uuid4()),
                    subject_id=subject_id,
                    attribute_name=name,
                    granted_by="seed",
                    granted_at=clock(),
                    expires_at=expires_at,
                )
            )
        return subject_id

    return _make
