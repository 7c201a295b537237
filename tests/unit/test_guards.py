"""
Tests for the auditor isolation guards.
"""

import pytest

from caseguard.abac.attributes import AttributeName
from caseguard.abac.guards import auditor_violation, ensure_grant_permitted
from caseguard.models import SubjectRole
from caseguard.security.errors import Forbidden


class TestGrantGuard:
    """Tests for the grant-time guard."""

    @pytest.mark.parametrize("attribute", [
        AttributeName.ADMIN_VAULT_REVEAL,
        AttributeName.USER_CREATE,
        AttributeName.USER_PROFILE_VIEW,
        AttributeName.CASE_DETAILS_VIEW,
        AttributeName.CASE_LIST_VIEW,
    ])
    def test_auditor_forbidden_attributes(self, attribute):
        with pytest.raises(Forbidden):
            ensure_grant_permitted(SubjectRole.AUDITOR, attribute)

    @pytest.mark.parametrize("attribute", [
        AttributeName.AUDIT_LOGS_VIEW,
        AttributeName.AUDIT_METRICS_VIEW,
        AttributeName.USER_LIST_VIEW,
        AttributeName.CLEARANCE_L2,
    ])
    def test_auditor_permitted_attributes(self, attribute):
        ensure_grant_permitted(SubjectRole.AUDITOR, attribute)

    def test_other_roles_unrestricted(self):
        ensure_grant_permitted(SubjectRole.SUPER_ADMIN, AttributeName.ADMIN_VAULT_REVEAL)
        ensure_grant_permitted(SubjectRole.JUDGE, AttributeName.CASE_DETAILS_VIEW)
        ensure_grant_permitted(None, AttributeName.CASE_DETAILS_VIEW)


class TestEvaluationGuard:
    """Tests for the evaluation-time guard."""

    def test_flags_held_forbidden_attribute(self):
        held = [AttributeName.AUDIT_LOGS_VIEW, AttributeName.CASE_LIST_VIEW]
        violation = auditor_violation(SubjectRole.AUDITOR, held, AttributeName.AUDIT_LOGS_VIEW)
        assert violation == AttributeName.CASE_LIST_VIEW

    def test_flags_forbidden_required_attribute(self):
        violation = auditor_violation(
            SubjectRole.AUDITOR, [], AttributeName.ADMIN_VAULT_REVEAL
        )
        assert violation == AttributeName.ADMIN_VAULT_REVEAL

    def test_clean_auditor_passes(self):
        held = [AttributeName.AUDIT_LOGS_VIEW, AttributeName.AUDIT_METRICS_VIEW]
        assert auditor_violation(SubjectRole.AUDITOR, held, AttributeName.AUDIT_LOGS_VIEW) is None

    def test_non_auditor_never_flagged(self):
        held = [AttributeName.ADMIN_VAULT_REVEAL]
        assert auditor_violation(SubjectRole.SUPER_ADMIN, held, None) is None
