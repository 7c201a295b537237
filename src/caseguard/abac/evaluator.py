"""
ABAC evaluation engine.

Decides allow/deny for an (actor, action, resource, context) tuple from:
1. The subject's active attributes (expired grants excluded)
2. The fixed action -> required attribute table
3. Restriction attributes, which always override later checks
4. Clearance level against the resource classification

Fail-closed: any internal error is a deny. Every call writes exactly one
Decision to the audit trail before returning.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from caseguard.abac.attributes import (
    AttributeName,
    Classification,
    blocking_restriction,
    clearance_level,
    parse_attribute_name,
    required_attribute,
)
from caseguard.abac.guards import auditor_violation
from caseguard.audit.recorder import AuditRecorder
from caseguard.models import Decision, DecisionResult, utcnow
from caseguard.security.errors import Forbidden
from caseguard.stores.base import AttributeStore

logger = logging.getLogger(__name__)


SYSTEM_ERROR_REASON = "System error - access denied"
ALL_CHECKS_PASSED = "All checks passed"


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of a permission check."""

    allowed: bool
    reason: str
    policy_name: Optional[str] = None
    attributes_checked: list[str] = field(default_factory=list)


class ABACEvaluator:
    """
    Attribute-based policy evaluator.

    Attributes are re-fetched on every call, so a revoked grant takes effect
    on the very next check.
    """

    CASE_RESOURCE = "case"

    def __init__(
        self,
        attribute_store: AttributeStore,
        recorder: AuditRecorder,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize evaluator.

        Args:
            attribute_store: Source of grants and roles
            recorder: Audit recorder for decisions
            clock: Time source for decision timestamps
        """
        self._attributes = attribute_store
        self._recorder = recorder
        self._clock = clock

    async def check_permission(
        self,
        subject_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        context_metadata: Optional[dict[str, Any]] = None,
    ) -> EvaluationResult:
        """
        Main entry point for permission checks.

        Example:
            result = await evaluator.check_permission(user_id, "case.create", "case")
            if not result.allowed:
                raise Forbidden(result.reason)
        """
        try:
            result = await self._evaluate(subject_id, action, resource_type, context_metadata)
        except Exception:
            logger.exception(f"ABAC evaluation failed for action {action}; denying")
            result = EvaluationResult(
                allowed=False,
                reason=SYSTEM_ERROR_REASON,
                policy_name="Fail Closed",
            )

        if not result.allowed:
            logger.warning(f"Denied {action} on {resource_type} for {subject_id}: {result.reason}")

        await self._recorder.record_decision(
            Decision(
                subject_id=subject_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                result=DecisionResult.ALLOW if result.allowed else DecisionResult.DENY,
                reason=result.reason,
                policy_name=result.policy_name,
                context_metadata=context_metadata,
                timestamp=self._clock(),
            )
        )
        return result

    async def enforce_permission(
        self,
        subject_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        context_metadata: Optional[dict[str, Any]] = None,
    ) -> EvaluationResult:
        """
        Check a permission and raise on deny.

        Raises:
            Forbidden: If the check denies
        """
        result = await self.check_permission(
            subject_id, action, resource_type, resource_id, context_metadata
        )
        if not result.allowed:
            raise Forbidden(result.reason)
        return result

    async def has_attribute(self, subject_id: str, name: AttributeName) -> bool:
        """Whether the subject currently holds an attribute. False on error."""
        try:
            return name in await self._held_attributes(subject_id)
        except Exception:
            logger.exception("Error checking attribute")
            return False

    async def has_clearance(self, subject_id: str, min_level: int) -> bool:
        """Whether the subject's clearance reaches min_level. False on error."""
        try:
            return clearance_level(await self._held_attributes(subject_id)) >= min_level
        except Exception:
            logger.exception("Error checking clearance")
            return False

    async def _held_attributes(self, subject_id: str) -> list[AttributeName]:
        grants = await self._attributes.list_active_grants(subject_id)
        # Unknown names are malformed data and propagate as errors
        return [parse_attribute_name(g.attribute_name) for g in grants]

    async def _evaluate(
        self,
        subject_id: str,
        action: str,
        resource_type: str,
        context_metadata: Optional[dict[str, Any]],
    ) -> EvaluationResult:
        # 1. Active attributes and role
        held = await self._held_attributes(subject_id)
        role = await self._attributes.get_subject_role(subject_id)
        required = required_attribute(action)

        # Defensive auditor check, independent of the grant-time guard
        violation = auditor_violation(role, held, required)
        if violation is not None:
            logger.warning(
                f"SECURITY VIOLATION: auditor {subject_id} evaluated with "
                f"forbidden attribute {violation.value}"
            )
            return EvaluationResult(
                allowed=False,
                reason=f"Auditor role cannot use attribute: {violation.value}",
                policy_name="Auditor Isolation",
                attributes_checked=[violation.value],
            )

        # 2. Required permission
        if required is not None and required not in held:
            return EvaluationResult(
                allowed=False,
                reason=f"Missing required attribute: {required.value}",
                attributes_checked=[required.value],
            )

        # 3. Restrictions override everything after the permission check
        restriction = blocking_restriction(held, action)
        if restriction is not None:
            return EvaluationResult(
                allowed=False,
                reason=f"Blocked by restriction: {restriction.value}",
                policy_name="Restriction Policy",
                attributes_checked=[restriction.value],
            )

        # 4. Clearance against classification
        raw_classification = (context_metadata or {}).get("classification")
        if resource_type == self.CASE_RESOURCE and raw_classification:
            try:
                classification = Classification(raw_classification)
            except ValueError:
                return EvaluationResult(
                    allowed=False,
                    reason="Unknown classification",
                    policy_name="Classification Control",
                )

            level = clearance_level(held)
            # No clearance at all still passes for public material
            if classification != Classification.PUBLIC and level < classification.required_level:
                return EvaluationResult(
                    allowed=False,
                    reason=f"Insufficient clearance for classification: {classification.value}",
                    policy_name="Classification Control",
                )

        # 5. Allow
        return EvaluationResult(
            allowed=True,
            reason=ALL_CHECKS_PASSED,
            attributes_checked=[name.value for name in held],
        )
