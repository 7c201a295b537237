"""
Tests for granting and revoking attributes.
"""

from datetime import timedelta

import pytest

from caseguard.abac.grants import AttributeGrantService
from caseguard.models import SubjectRole
from caseguard.security.errors import Forbidden, InvalidInput, NotFound


@pytest.fixture
def grant_service(evaluator, attribute_store, clock):
    return AttributeGrantService(evaluator, attribute_store, clock)


class TestGrant:
    """Tests for AttributeGrantService.grant()."""

    @pytest.mark.asyncio
    async def test_grant_takes_effect_immediately(
        self, grant_service, evaluator, attribute_store, make_subject
    ):
        admin = await make_subject(attribute_store, SubjectRole.SUPER_ADMIN, "admin.abac.manage")
        judge = await make_subject(attribute_store, SubjectRole.JUDGE)

        assert not (await evaluator.check_permission(judge, "doc.sign", "document")).allowed

        grant = await grant_service.grant(admin, judge, "doc.sign.digital", reason="panel duty")

        assert grant.granted_by == admin
        assert grant.reason == "panel duty"
        assert (await evaluator.check_permission(judge, "doc.sign", "document")).allowed

    @pytest.mark.asyncio
    async def test_requires_admin_attribute(self, grant_service, attribute_store, make_subject):
        secretary = await make_subject(attribute_store, SubjectRole.SECRETARY, "case.create")
        judge = await make_subject(attribute_store, SubjectRole.JUDGE)

        with pytest.raises(Forbidden):
            await grant_service.grant(secretary, judge, "doc.view")

    @pytest.mark.asyncio
    async def test_unknown_attribute_rejected(
        self, grant_service, attribute_store, make_subject
    ):
        admin = await make_subject(attribute_store, SubjectRole.SUPER_ADMIN, "admin.abac.manage")
        judge = await make_subject(attribute_store, SubjectRole.JUDGE)

        with pytest.raises(InvalidInput):
            await grant_service.grant(admin, judge, "doc.sign")

    @pytest.mark.asyncio
    async def test_past_expiry_rejected(
        self, grant_service, attribute_store, make_subject, clock
    ):
        admin = await make_subject(attribute_store, SubjectRole.SUPER_ADMIN, "admin.abac.manage")
        judge = await make_subject(attribute_store, SubjectRole.JUDGE)

        with pytest.raises(InvalidInput):
            await grant_service.grant(
                admin, judge, "doc.view", expires_at=clock() - timedelta(minutes=1)
            )

    @pytest.mark.asyncio
    async def test_unknown_subject(self, grant_service, attribute_store, make_subject):
        admin = await make_subject(attribute_store, SubjectRole.SUPER_ADMIN, "admin.abac.manage")

        with pytest.raises(NotFound):
            await grant_service.grant(admin, "nobody", "doc.view")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("attribute", [
        "admin.vault.reveal_identity",
        "user.create",
        "case.details.view",
    ])
    async def test_auditor_cannot_receive_forbidden_attributes(
        self, grant_service, evaluator, attribute_store, make_subject, attribute
    ):
        admin = await make_subject(attribute_store, SubjectRole.SUPER_ADMIN, "admin.abac.manage")
        auditor = await make_subject(attribute_store, SubjectRole.AUDITOR, "audit.logs.view")

        with pytest.raises(Forbidden):
            await grant_service.grant(admin, auditor, attribute)

        # Nothing was written
        assert not await evaluator.has_attribute(auditor, attribute)
        assert (await evaluator.check_permission(auditor, "audit.view_logs", "audit")).allowed

    @pytest.mark.asyncio
    async def test_auditor_can_receive_audit_attributes(
        self, grant_service, evaluator, attribute_store, make_subject
    ):
        admin = await make_subject(attribute_store, SubjectRole.SUPER_ADMIN, "admin.abac.manage")
        auditor = await make_subject(attribute_store, SubjectRole.AUDITOR)

        await grant_service.grant(admin, auditor, "audit.metrics.view")

        assert (await evaluator.check_permission(auditor, "audit.view_metrics", "audit")).allowed


class TestRevoke:
    """Tests for AttributeGrantService.revoke()."""

    @pytest.mark.asyncio
    async def test_revoke_takes_effect_on_next_check(
        self, grant_service, evaluator, attribute_store, make_subject
    ):
        admin = await make_subject(attribute_store, SubjectRole.SUPER_ADMIN, "admin.abac.manage")
        judge = await make_subject(attribute_store, SubjectRole.JUDGE)
        grant = await grant_service.grant(admin, judge, "doc.view")
        assert (await evaluator.check_permission(judge, "doc.view", "document")).allowed

        await grant_service.revoke(admin, grant.id)

        assert not (await evaluator.check_permission(judge, "doc.view", "document")).allowed

    @pytest.mark.asyncio
    async def test_revoke_unknown_grant(self, grant_service, attribute_store, make_subject):
        admin = await make_subject(attribute_store, SubjectRole.SUPER_ADMIN, "admin.abac.manage")
        with pytest.raises(NotFound):
            await grant_service.revoke(admin, "missing-grant")

    @pytest.mark.asyncio
    async def test_revoke_requires_admin(self, grant_service, attribute_store, make_subject):
        judge = await make_subject(attribute_store, SubjectRole.JUDGE)
        with pytest.raises(Forbidden):
            await grant_service.revoke(judge, "any-grant")
