"""
Tests for the ABAC evaluator.

Tests:
- Required attribute, restriction and clearance checks
- Auditor isolation at evaluation time
- Fail-closed behavior
- Exactly one recorded decision per evaluation
"""

import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest

from caseguard.abac.attributes import AttributeName
from caseguard.abac.evaluator import SYSTEM_ERROR_REASON, ABACEvaluator
from caseguard.audit.anonymizer import to_anonymized, user_hash
from caseguard.audit.recorder import AuditRecorder
from caseguard.models import AttributeGrant, DecisionResult, SubjectRole
from caseguard.security.errors import Forbidden
from caseguard.stores.base import AttributeStore, AuditSink


class TestRequiredAttribute:
    """Tests for the primary permission check."""

    @pytest.mark.asyncio
    async def test_missing_attribute_denies_and_records(
        self, evaluator, attribute_store, audit_sink, make_subject
    ):
        """A subject with only case.create cannot edit a case."""
        subject = await make_subject(attribute_store, SubjectRole.SECRETARY, "case.create")

        result = await evaluator.check_permission(subject, "case.edit", "cases")

        assert not result.allowed
        assert result.reason == "Missing required attribute: case.edit.metadata"

        assert len(audit_sink.decisions) == 1
        decision = audit_sink.decisions[0]
        assert decision.result == DecisionResult.DENY
        assert decision.subject_id == subject

        anonymized = to_anonymized(decision)
        assert anonymized.user_hash == user_hash(subject)
        assert not hasattr(anonymized, "resource_id")
        assert not hasattr(anonymized, "subject_id")

    @pytest.mark.asyncio
    async def test_held_attribute_allows(self, evaluator, attribute_store, make_subject):
        subject = await make_subject(attribute_store, SubjectRole.SECRETARY, "case.create")

        result = await evaluator.check_permission(subject, "case.create", "case")

        assert result.allowed
        assert result.reason == "All checks passed"
        assert "case.create" in result.attributes_checked

    @pytest.mark.asyncio
    async def test_unmapped_action_allowed(self, evaluator, attribute_store, make_subject):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE)
        result = await evaluator.check_permission(subject, "doc.export", "document")
        assert result.allowed

    @pytest.mark.asyncio
    async def test_expired_grant_ignored(
        self, evaluator, attribute_store, make_subject, clock
    ):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE)
        await attribute_store.add_grant(
            AttributeGrant(
                id=str(uuid.uuid4()),
                subject_id=subject,
                attribute_name="case.list.view",
                granted_by="seed",
                granted_at=clock(),
                expires_at=clock.now.replace(hour=14),
            )
        )
        assert (await evaluator.check_permission(subject, "case.view", "case")).allowed

        clock.advance(hours=2)
        result = await evaluator.check_permission(subject, "case.view", "case")
        assert not result.allowed


class TestRestrictions:
    """Tests for restriction attributes."""

    @pytest.mark.asyncio
    async def test_restriction_overrides_permission(
        self, evaluator, attribute_store, make_subject
    ):
        subject = await make_subject(
            attribute_store, SubjectRole.JUDGE, "doc.download", "restrict.no_export"
        )

        result = await evaluator.check_permission(subject, "doc.download", "document")

        assert not result.allowed
        assert result.reason == "Blocked by restriction: restrict.no_export"

    @pytest.mark.asyncio
    async def test_restriction_blocks_unmapped_action(
        self, evaluator, attribute_store, make_subject
    ):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE, "restrict.no_export")
        result = await evaluator.check_permission(subject, "doc.export", "document")
        assert not result.allowed

    @pytest.mark.asyncio
    async def test_missing_permission_reported_before_restriction(
        self, evaluator, attribute_store, make_subject
    ):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE, "restrict.no_delete")
        result = await evaluator.check_permission(subject, "case.delete", "case")
        assert result.reason == "Missing required attribute: case.delete"


class TestClearance:
    """Tests for classification checks."""

    @pytest.mark.asyncio
    async def test_insufficient_clearance(self, evaluator, attribute_store, make_subject):
        subject = await make_subject(
            attribute_store, SubjectRole.JUDGE, "case.details.view", "clearance.L2.confidential"
        )

        result = await evaluator.check_permission(
            subject, "case.view_details", "case", context_metadata={"classification": "secret"}
        )

        assert not result.allowed
        assert result.reason == "Insufficient clearance for classification: secret"

    @pytest.mark.asyncio
    async def test_sufficient_clearance(self, evaluator, attribute_store, make_subject):
        subject = await make_subject(
            attribute_store, SubjectRole.JUDGE, "case.details.view", "clearance.L3.secret"
        )
        result = await evaluator.check_permission(
            subject, "case.view_details", "case", context_metadata={"classification": "secret"}
        )
        assert result.allowed

    @pytest.mark.asyncio
    async def test_public_needs_no_clearance(self, evaluator, attribute_store, make_subject):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE, "case.details.view")
        result = await evaluator.check_permission(
            subject, "case.view_details", "case", context_metadata={"classification": "public"}
        )
        assert result.allowed

    @pytest.mark.asyncio
    async def test_unknown_classification_denies(
        self, evaluator, attribute_store, make_subject
    ):
        subject = await make_subject(
            attribute_store, SubjectRole.JUDGE, "case.details.view", "clearance.L4.top_secret"
        )
        result = await evaluator.check_permission(
            subject, "case.view_details", "case", context_metadata={"classification": "cosmic"}
        )
        assert not result.allowed

    @pytest.mark.asyncio
    async def test_classification_only_applies_to_cases(
        self, evaluator, attribute_store, make_subject
    ):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE, "doc.view")
        result = await evaluator.check_permission(
            subject, "doc.view", "document", context_metadata={"classification": "top_secret"}
        )
        assert result.allowed


class TestAuditorIsolation:
    """The evaluator denies auditors even if a forbidden grant slipped in."""

    @pytest.mark.asyncio
    async def test_planted_case_grant_denies_everything(
        self, evaluator, attribute_store, make_subject
    ):
        auditor = await make_subject(
            attribute_store, SubjectRole.AUDITOR, "audit.logs.view", "case.details.view"
        )

        result = await evaluator.check_permission(auditor, "audit.view_logs", "audit")

        assert not result.allowed
        assert "case.details.view" in result.reason

    @pytest.mark.asyncio
    async def test_planted_vault_grant_denies_reveal(
        self, evaluator, attribute_store, make_subject
    ):
        auditor = await make_subject(
            attribute_store, SubjectRole.AUDITOR, "admin.vault.reveal_identity"
        )
        result = await evaluator.check_permission(
            auditor, "admin.reveal_identity", "identity_vault"
        )
        assert not result.allowed

    @pytest.mark.asyncio
    async def test_clean_auditor_allowed_audit_views(
        self, evaluator, attribute_store, make_subject
    ):
        auditor = await make_subject(attribute_store, SubjectRole.AUDITOR, "audit.logs.view")
        result = await evaluator.check_permission(auditor, "audit.view_logs", "audit")
        assert result.allowed


class TestFailClosed:
    """Any internal error is a deny, and still recorded."""

    @pytest.mark.asyncio
    async def test_store_error_denies(self, recorder, audit_sink):
        store = AsyncMock(spec=AttributeStore)
        store.list_active_grants.side_effect = RuntimeError("connection reset")
        evaluator = ABACEvaluator(store, recorder)

        result = await evaluator.check_permission("someone", "case.create", "case")

        assert not result.allowed
        assert result.reason == SYSTEM_ERROR_REASON
        assert "connection reset" not in result.reason
        assert len(audit_sink.decisions) == 1
        assert audit_sink.decisions[0].result == DecisionResult.DENY

    @pytest.mark.asyncio
    async def test_unknown_attribute_in_store_denies(
        self, evaluator, attribute_store, make_subject, clock
    ):
        """A legacy attribute name outside the catalog is malformed data."""
        subject = await make_subject(attribute_store, SubjectRole.JUDGE, "case.create")
        attribute_store.define_attribute("case.legacy_flag", "permission", 1)
        await attribute_store.add_grant(
            AttributeGrant(
                id=str(uuid.uuid4()),
                subject_id=subject,
                attribute_name="case.legacy_flag",
                granted_by="seed",
                granted_at=clock(),
            )
        )

        result = await evaluator.check_permission(subject, "case.create", "case")

        assert not result.allowed
        assert result.reason == SYSTEM_ERROR_REASON

    @pytest.mark.asyncio
    async def test_helpers_fail_closed(self, recorder):
        store = AsyncMock(spec=AttributeStore)
        store.list_active_grants.side_effect = RuntimeError("boom")
        evaluator = ABACEvaluator(store, recorder)

        assert await evaluator.has_attribute("x", AttributeName.CASE_CREATE) is False
        assert await evaluator.has_clearance("x", 1) is False


class TestDecisionRecording:
    """Tests for the decision trail."""

    @pytest.mark.asyncio
    async def test_one_decision_per_call(
        self, evaluator, attribute_store, audit_sink, make_subject
    ):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE, "doc.view")

        await evaluator.check_permission(subject, "doc.view", "document")
        await evaluator.check_permission(subject, "doc.upload", "document")
        await evaluator.check_permission(subject, "doc.view", "document", resource_id="d-1")

        assert len(audit_sink.decisions) == 3
        assert [d.result for d in audit_sink.decisions] == [
            DecisionResult.ALLOW,
            DecisionResult.DENY,
            DecisionResult.ALLOW,
        ]
        assert audit_sink.decisions[2].resource_id == "d-1"

    @pytest.mark.asyncio
    async def test_reason_never_contains_resource_id(
        self, evaluator, attribute_store, audit_sink, make_subject
    ):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE)
        resource_id = str(uuid.uuid4())

        result = await evaluator.check_permission(subject, "case.delete", "case", resource_id)

        assert resource_id not in result.reason
        assert resource_id not in audit_sink.decisions[0].reason

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_change_result(
        self, attribute_store, make_subject, clock
    ):
        sink = AsyncMock(spec=AuditSink)
        sink.append.side_effect = RuntimeError("disk full")
        recorder = AuditRecorder(sink, timeout_seconds=0.5)
        evaluator = ABACEvaluator(attribute_store, recorder, clock)
        subject = await make_subject(attribute_store, SubjectRole.JUDGE, "doc.view")

        result = await evaluator.check_permission(subject, "doc.view", "document")

        assert result.allowed
        assert len(recorder.failures) == 1
        assert "disk full" in recorder.failures[0].error

    @pytest.mark.asyncio
    async def test_hanging_sink_is_bounded(self, attribute_store, make_subject, clock):
        async def hang(decision):
            await asyncio.sleep(10)

        sink = AsyncMock(spec=AuditSink)
        sink.append.side_effect = hang
        recorder = AuditRecorder(sink, timeout_seconds=0.05)
        evaluator = ABACEvaluator(attribute_store, recorder, clock)
        subject = await make_subject(attribute_store, SubjectRole.JUDGE)

        result = await asyncio.wait_for(
            evaluator.check_permission(subject, "doc.view", "document"), timeout=2
        )

        assert not result.allowed
        assert "timed out" in recorder.failures[0].error


class TestEnforce:
    """Tests for enforce_permission()."""

    @pytest.mark.asyncio
    async def test_deny_raises_forbidden(self, evaluator, attribute_store, make_subject):
        subject = await make_subject(attribute_store, SubjectRole.JUDGE)
        with pytest.raises(Forbidden) as exc_info:
            await evaluator.enforce_permission(subject, "case.create", "case")
        assert exc_info.value.public_message == "Access denied"

    @pytest.mark.asyncio
    async def test_allow_returns_result(self, evaluator, attribute_store, make_subject):
        subject = await make_subject(attribute_store, SubjectRole.SECRETARY, "case.create")
        result = await evaluator.enforce_permission(subject, "case.create", "case")
        assert result.allowed

    @pytest.mark.asyncio
    async def test_clearance_helper(self, evaluator, attribute_store, make_subject):
        subject = await make_subject(
            attribute_store, SubjectRole.JUDGE, "clearance.L2.confidential"
        )
        assert await evaluator.has_clearance(subject, 2)
        assert not await evaluator.has_clearance(subject, 3)
        assert await evaluator.has_attribute(subject, AttributeName.CLEARANCE_L2)
