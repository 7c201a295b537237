"""
Tests for the identity vault.

Tests:
- Stable pseudonyms per (subject, case)
- Reveal gating, including the auditor refusal
- Access checks and the NotFound policy
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from caseguard.models import SubjectRole
from caseguard.security.errors import NotFound
from caseguard.stores.base import CaseStore
from caseguard.vault.identity import IdentityVault


@pytest.fixture
def vault(pseudonym_store, case_store, attribute_store, evaluator, clock):
    return IdentityVault(pseudonym_store, case_store, attribute_store, evaluator, clock)


class TestPseudonyms:
    """Tests for get_or_create_pseudonym()."""

    @pytest.mark.asyncio
    async def test_stable_for_same_pair(self, vault):
        first = await vault.get_or_create_pseudonym("judge-1", "case-1")
        second = await vault.get_or_create_pseudonym("judge-1", "case-1")
        assert first == second

    @pytest.mark.asyncio
    async def test_distinct_per_case(self, vault):
        a = await vault.get_or_create_pseudonym("judge-1", "case-1")
        b = await vault.get_or_create_pseudonym("judge-1", "case-2")
        assert a != b
        assert "judge-1" not in a

    @pytest.mark.asyncio
    async def test_concurrent_creation_converges(self, vault):
        results = await asyncio.gather(
            *[vault.get_or_create_pseudonym("judge-1", "case-1") for _ in range(10)]
        )
        assert len(set(results)) == 1


class TestResolveIdentity:
    """Tests for resolve_identity()."""

    @pytest.mark.asyncio
    async def test_super_admin_resolves(self, vault, attribute_store, make_subject):
        admin = await make_subject(
            attribute_store, SubjectRole.SUPER_ADMIN, "admin.vault.reveal_identity"
        )
        anon_id = await vault.get_or_create_pseudonym("judge-1", "case-1")

        identity = await vault.resolve_identity(anon_id, admin)

        assert identity.subject_id == "judge-1"
        assert identity.case_id == "case-1"

    @pytest.mark.asyncio
    async def test_auditor_refused_even_with_planted_grant(
        self, vault, attribute_store, audit_sink, make_subject
    ):
        auditor = await make_subject(
            attribute_store, SubjectRole.AUDITOR, "admin.vault.reveal_identity"
        )
        anon_id = await vault.get_or_create_pseudonym("judge-1", "case-1")

        assert await vault.resolve_identity(anon_id, auditor) is None
        # Refused before the evaluator is consulted
        assert audit_sink.decisions == []

    @pytest.mark.asyncio
    async def test_without_permission(self, vault, attribute_store, audit_sink, make_subject):
        judge = await make_subject(attribute_store, SubjectRole.JUDGE)
        anon_id = await vault.get_or_create_pseudonym("judge-1", "case-1")

        assert await vault.resolve_identity(anon_id, judge) is None
        assert len(audit_sink.decisions) == 1
        assert not audit_sink.decisions[0].allowed

    @pytest.mark.asyncio
    async def test_unknown_anon_id(self, vault, attribute_store, make_subject):
        admin = await make_subject(
            attribute_store, SubjectRole.SUPER_ADMIN, "admin.vault.reveal_identity"
        )
        assert await vault.resolve_identity("no-such-pseudonym", admin) is None


class TestAccess:
    """Tests for verify_access() and require_access()."""

    @pytest.mark.asyncio
    async def test_assignee_has_access(self, vault):
        await vault.assign_to_case("judge-1", "case-1", "judge")
        assert (await vault.verify_access("judge-1", "case-1")).has_access

    @pytest.mark.asyncio
    async def test_unassigned_subject(self, vault):
        await vault.assign_to_case("judge-1", "case-1", "judge")
        assert not (await vault.verify_access("judge-2", "case-1")).has_access

    @pytest.mark.asyncio
    async def test_reassignment_removes_access(self, vault):
        await vault.assign_to_case("judge-1", "case-1", "judge")
        await vault.assign_to_case("judge-2", "case-1", "judge")

        assert not (await vault.verify_access("judge-1", "case-1")).has_access
        assert (await vault.verify_access("judge-2", "case-1")).has_access

    @pytest.mark.asyncio
    async def test_pseudonym_without_assignment(self, vault):
        await vault.get_or_create_pseudonym("judge-1", "case-1")
        assert not (await vault.verify_access("judge-1", "case-1")).has_access

    @pytest.mark.asyncio
    async def test_store_error_denies(
        self, pseudonym_store, attribute_store, evaluator, clock
    ):
        cases = AsyncMock(spec=CaseStore)
        cases.get_assignment.side_effect = RuntimeError("db down")
        vault = IdentityVault(pseudonym_store, cases, attribute_store, evaluator, clock)
        await vault.get_or_create_pseudonym("judge-1", "case-1")

        assert not (await vault.verify_access("judge-1", "case-1")).has_access

    @pytest.mark.asyncio
    async def test_missing_and_unassigned_look_the_same(self, vault):
        await vault.assign_to_case("judge-1", "case-1", "judge")

        with pytest.raises(NotFound) as unassigned:
            await vault.require_access("judge-2", "case-1")
        with pytest.raises(NotFound) as missing:
            await vault.require_access("judge-2", "no-such-case")

        assert unassigned.value.public_message == missing.value.public_message
