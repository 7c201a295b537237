"""
Decision anonymization for the auditor role.

Auditors see who-did-what patterns through a short user hash, never the
subject id itself:
- user_hash: first 8 hex chars of MD5(subject_id), versioned
- resource_id and context metadata are dropped
- reasons are scrubbed of identifier-shaped text and truncated

The hash is a stable pseudonym, not a secret. It is only as strong as the
subject ids are unguessable (random UUIDs).
"""

import hashlib
import re
from typing import Optional

from caseguard.models import AnonymizedDecision, Decision

# Bump when the hashing scheme changes so reports are not compared across schemes
HASH_VERSION = "md5-trunc8-v1"

USER_HASH_LENGTH = 8
REDACTED_ID = "[redacted-id]"
DEFAULT_REASON_MAX_LENGTH = 100

_UUID_PATTERN = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)


def user_hash(subject_id: str) -> str:
    """
    Short, deterministic pseudonym for a subject.

    Args:
        subject_id: Real subject identifier

    Returns:
        8 lowercase hex characters
    """
    digest = hashlib.md5(subject_id.encode("utf-8")).hexdigest()
    return digest[:USER_HASH_LENGTH]


def redact_reason(reason: Optional[str], max_length: int = DEFAULT_REASON_MAX_LENGTH) -> Optional[str]:
    """Replace UUIDs in a reason and cap its length."""
    if reason is None:
        return None
    scrubbed = _UUID_PATTERN.sub(REDACTED_ID, reason)
    if len(scrubbed) > max_length:
        return scrubbed[:max_length] + "..."
    return scrubbed


def to_anonymized(
    decision: Decision, reason_max_length: int = DEFAULT_REASON_MAX_LENGTH
) -> AnonymizedDecision:
    """Project a Decision onto the auditor-safe view."""
    ts = decision.timestamp
    return AnonymizedDecision(
        user_hash=user_hash(decision.subject_id),
        action=decision.action,
        resource_type=decision.resource_type,
        result=decision.result,
        reason=redact_reason(decision.reason, reason_max_length),
        timestamp=ts,
        hour_of_day=ts.hour,
        # 0 = Sunday, matching the reporting views
        day_of_week=(ts.weekday() + 1) % 7,
    )
