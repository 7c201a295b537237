"""
ABAC attribute catalog.

Every attribute the platform knows about is a member of AttributeName, and
every table that refers to attributes (action mapping, restriction blocks,
clearance tiers) is keyed by those members. validate_catalog() runs at
startup so that a misspelled or unmapped entry stops the process instead of
silently matching nothing.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class AttributeCategory(str, Enum):
    PERMISSION = "permission"
    AUTHORIZATION = "authorization"
    RESTRICTION = "restriction"


class Capability(str, Enum):
    """What an attribute unlocks. Used by the auditor guards."""

    CASE = "case"
    DOCUMENT = "document"
    USER_DIRECTORY = "user_directory"
    USER_MANAGEMENT = "user_management"
    CLEARANCE = "clearance"
    RESTRICTION = "restriction"
    ADMIN = "admin"
    VAULT = "vault"
    AUDIT = "audit"


class AttributeName(str, Enum):
    # Cases
    CASE_LIST_VIEW = "case.list.view"
    CASE_DETAILS_VIEW = "case.details.view"
    CASE_ASSIGNED_ONLY = "case.assigned_only"
    CASE_CREATE = "case.create"
    CASE_EDIT_METADATA = "case.edit.metadata"
    CASE_EDIT_STATUS = "case.edit.status"
    CASE_ASSIGN_JUDGE = "case.assign.judge"
    CASE_CLOSE = "case.close"
    CASE_DELETE = "case.delete"

    # Documents
    DOC_VIEW = "doc.view"
    DOC_UPLOAD = "doc.upload"
    DOC_DOWNLOAD = "doc.download"
    DOC_SIGN = "doc.sign.digital"
    DOC_DELETE = "doc.delete"

    # Users
    USER_LIST_VIEW = "user.list.view"
    USER_PROFILE_VIEW = "user.profile.view"
    USER_CREATE = "user.create"
    USER_EDIT = "user.edit"
    USER_DEACTIVATE = "user.deactivate"

    # Clearance tiers
    CLEARANCE_L1 = "clearance.L1.public"
    CLEARANCE_L2 = "clearance.L2.confidential"
    CLEARANCE_L3 = "clearance.L3.secret"
    CLEARANCE_L4 = "clearance.L4.top_secret"

    # Restrictions
    RESTRICT_READ_ONLY = "restrict.read_only"
    RESTRICT_NO_EXPORT = "restrict.no_export"
    RESTRICT_NO_DELETE = "restrict.no_delete"

    # Super admin
    ADMIN_ABAC_MANAGE = "admin.abac.manage"
    ADMIN_VAULT_REVEAL = "admin.vault.reveal_identity"
    ADMIN_AUDIT_VIEW = "admin.audit.view"

    # Auditor (anonymized data and aggregates only)
    AUDIT_LOGS_VIEW = "audit.logs.view"
    AUDIT_METRICS_VIEW = "audit.metrics.view"
    AUDIT_TOKENS_VIEW = "audit.tokens.view"
    AUDIT_CASES_STATS = "audit.cases.stats"
    AUDIT_EXPORT_CSV = "audit.export.csv"


@dataclass(frozen=True)
class AttributeSpec:
    """Immutable catalog entry."""

    name: AttributeName
    category: AttributeCategory
    level: int
    capability: Capability
    description: str


def _spec(
    name: AttributeName,
    category: AttributeCategory,
    level: int,
    capability: Capability,
    description: str,
) -> tuple[AttributeName, AttributeSpec]:
    return name, AttributeSpec(name, category, level, capability, description)


_P = AttributeCategory.PERMISSION
_A = AttributeCategory.AUTHORIZATION
_R = AttributeCategory.RESTRICTION

CATALOG: dict[AttributeName, AttributeSpec] = dict([
    _spec(AttributeName.CASE_LIST_VIEW, _P, 1, Capability.CASE, "List cases"),
    _spec(AttributeName.CASE_DETAILS_VIEW, _P, 2, Capability.CASE, "View case details"),
    _spec(AttributeName.CASE_ASSIGNED_ONLY, _A, 1, Capability.CASE, "Limited to assigned cases"),
    _spec(AttributeName.CASE_CREATE, _P, 2, Capability.CASE, "Create cases"),
    _spec(AttributeName.CASE_EDIT_METADATA, _P, 2, Capability.CASE, "Edit case metadata"),
    _spec(AttributeName.CASE_EDIT_STATUS, _P, 2, Capability.CASE, "Change case status"),
    _spec(AttributeName.CASE_ASSIGN_JUDGE, _P, 3, Capability.CASE, "Assign a judge to a case"),
    _spec(AttributeName.CASE_CLOSE, _P, 3, Capability.CASE, "Close cases"),
    _spec(AttributeName.CASE_DELETE, _P, 4, Capability.CASE, "Delete cases"),
    _spec(AttributeName.DOC_VIEW, _P, 1, Capability.DOCUMENT, "View documents"),
    _spec(AttributeName.DOC_UPLOAD, _P, 2, Capability.DOCUMENT, "Upload documents"),
    _spec(AttributeName.DOC_DOWNLOAD, _P, 2, Capability.DOCUMENT, "Download documents"),
    _spec(AttributeName.DOC_SIGN, _P, 3, Capability.DOCUMENT, "Sign documents digitally"),
    _spec(AttributeName.DOC_DELETE, _P, 4, Capability.DOCUMENT, "Delete documents"),
    _spec(AttributeName.USER_LIST_VIEW, _P, 2, Capability.USER_DIRECTORY, "List users"),
    _spec(AttributeName.USER_PROFILE_VIEW, _P, 3, Capability.USER_MANAGEMENT, "View user profiles"),
    _spec(AttributeName.USER_CREATE, _P, 4, Capability.USER_MANAGEMENT, "Create users"),
    _spec(AttributeName.USER_EDIT, _P, 4, Capability.USER_MANAGEMENT, "Edit users"),
    _spec(AttributeName.USER_DEACTIVATE, _P, 4, Capability.USER_MANAGEMENT, "Deactivate users"),
    _spec(AttributeName.CLEARANCE_L1, _A, 1, Capability.CLEARANCE, "Public clearance"),
    _spec(AttributeName.CLEARANCE_L2, _A, 2, Capability.CLEARANCE, "Confidential clearance"),
    _spec(AttributeName.CLEARANCE_L3, _A, 3, Capability.CLEARANCE, "Secret clearance"),
    _spec(AttributeName.CLEARANCE_L4, _A, 4, Capability.CLEARANCE, "Top secret clearance"),
    _spec(AttributeName.RESTRICT_READ_ONLY, _R, 1, Capability.RESTRICTION, "Read-only access"),
    _spec(AttributeName.RESTRICT_NO_EXPORT, _R, 1, Capability.RESTRICTION, "No document export"),
    _spec(AttributeName.RESTRICT_NO_DELETE, _R, 1, Capability.RESTRICTION, "No deletions"),
    _spec(AttributeName.ADMIN_ABAC_MANAGE, _P, 4, Capability.ADMIN, "Manage ABAC attributes"),
    _spec(AttributeName.ADMIN_VAULT_REVEAL, _P, 4, Capability.VAULT, "Reveal vault identities"),
    _spec(AttributeName.ADMIN_AUDIT_VIEW, _P, 4, Capability.ADMIN, "View raw audit data"),
    _spec(AttributeName.AUDIT_LOGS_VIEW, _P, 3, Capability.AUDIT, "View anonymized audit logs"),
    _spec(AttributeName.AUDIT_METRICS_VIEW, _P, 3, Capability.AUDIT, "View aggregate metrics"),
    _spec(AttributeName.AUDIT_TOKENS_VIEW, _P, 3, Capability.AUDIT, "View credential statistics"),
    _spec(AttributeName.AUDIT_CASES_STATS, _P, 3, Capability.AUDIT, "View aggregate case statistics"),
    _spec(AttributeName.AUDIT_EXPORT_CSV, _P, 4, Capability.AUDIT, "Export audit reports"),
])


class Action(str, Enum):
    # Cases
    CASE_CREATE = "case.create"
    CASE_VIEW = "case.view"
    CASE_VIEW_DETAILS = "case.view_details"
    CASE_EDIT = "case.edit"
    CASE_UPDATE_STATUS = "case.update_status"
    CASE_ASSIGN = "case.assign"
    CASE_CLOSE = "case.close"
    CASE_DELETE = "case.delete"

    # Documents
    DOC_VIEW = "doc.view"
    DOC_UPLOAD = "doc.upload"
    DOC_DOWNLOAD = "doc.download"
    DOC_EXPORT = "doc.export"
    DOC_SIGN = "doc.sign"
    DOC_DELETE = "doc.delete"

    # Users
    USER_LIST = "user.list"
    USER_VIEW = "user.view"
    USER_CREATE = "user.create"
    USER_EDIT = "user.edit"
    USER_DEACTIVATE = "user.deactivate"

    # Super admin
    ADMIN_REVEAL_IDENTITY = "admin.reveal_identity"
    ADMIN_ABAC = "admin.abac"
    ADMIN_AUDIT = "admin.audit"

    # Auditor
    AUDIT_VIEW_LOGS = "audit.view_logs"
    AUDIT_VIEW_METRICS = "audit.view_metrics"
    AUDIT_VIEW_TOKENS = "audit.view_tokens"
    AUDIT_VIEW_CASE_STATS = "audit.view_case_stats"
    AUDIT_EXPORT = "audit.export"


# Action -> the single permission attribute it requires.
# Actions missing here have no primary permission requirement.
ACTION_ATTRIBUTES: dict[Action, AttributeName] = {
    Action.CASE_CREATE: AttributeName.CASE_CREATE,
    Action.CASE_VIEW: AttributeName.CASE_LIST_VIEW,
    Action.CASE_VIEW_DETAILS: AttributeName.CASE_DETAILS_VIEW,
    Action.CASE_EDIT: AttributeName.CASE_EDIT_METADATA,
    Action.CASE_UPDATE_STATUS: AttributeName.CASE_EDIT_STATUS,
    Action.CASE_ASSIGN: AttributeName.CASE_ASSIGN_JUDGE,
    Action.CASE_CLOSE: AttributeName.CASE_CLOSE,
    Action.CASE_DELETE: AttributeName.CASE_DELETE,
    Action.DOC_VIEW: AttributeName.DOC_VIEW,
    Action.DOC_UPLOAD: AttributeName.DOC_UPLOAD,
    Action.DOC_DOWNLOAD: AttributeName.DOC_DOWNLOAD,
    Action.DOC_SIGN: AttributeName.DOC_SIGN,
    Action.DOC_DELETE: AttributeName.DOC_DELETE,
    Action.USER_LIST: AttributeName.USER_LIST_VIEW,
    Action.USER_VIEW: AttributeName.USER_PROFILE_VIEW,
    Action.USER_CREATE: AttributeName.USER_CREATE,
    Action.USER_EDIT: AttributeName.USER_EDIT,
    Action.USER_DEACTIVATE: AttributeName.USER_DEACTIVATE,
    Action.ADMIN_REVEAL_IDENTITY: AttributeName.ADMIN_VAULT_REVEAL,
    Action.ADMIN_ABAC: AttributeName.ADMIN_ABAC_MANAGE,
    Action.ADMIN_AUDIT: AttributeName.ADMIN_AUDIT_VIEW,
    Action.AUDIT_VIEW_LOGS: AttributeName.AUDIT_LOGS_VIEW,
    Action.AUDIT_VIEW_METRICS: AttributeName.AUDIT_METRICS_VIEW,
    Action.AUDIT_VIEW_TOKENS: AttributeName.AUDIT_TOKENS_VIEW,
    Action.AUDIT_VIEW_CASE_STATS: AttributeName.AUDIT_CASES_STATS,
    Action.AUDIT_EXPORT: AttributeName.AUDIT_EXPORT_CSV,
}

# Restriction -> action prefixes it blocks
RESTRICTION_BLOCKS: dict[AttributeName, tuple[str, ...]] = {
    AttributeName.RESTRICT_NO_EXPORT: ("doc.download", "doc.export"),
    AttributeName.RESTRICT_NO_DELETE: ("case.delete", "doc.delete", "user.deactivate"),
    AttributeName.RESTRICT_READ_ONLY: ("case.edit", "case.create", "doc.upload", "doc.delete"),
}


class Classification(str, Enum):
    PUBLIC = "public"
    CONFIDENTIAL = "confidential"
    SECRET = "secret"
    TOP_SECRET = "top_secret"

    @property
    def required_level(self) -> int:
        return CLASSIFICATION_LEVELS[self]


CLASSIFICATION_LEVELS: dict[Classification, int] = {
    Classification.PUBLIC: 1,
    Classification.CONFIDENTIAL: 2,
    Classification.SECRET: 3,
    Classification.TOP_SECRET: 4,
}


class UnknownAttributeError(ValueError):
    """Attribute name is not part of the catalog."""
    pass


class CatalogError(RuntimeError):
    """The attribute tables are inconsistent."""
    pass


def parse_attribute_name(name: str) -> AttributeName:
    """
    Resolve a stored attribute name to its catalog member.

    Raises:
        UnknownAttributeError: If the name is not in the catalog
    """
    try:
        return AttributeName(name)
    except ValueError:
        raise UnknownAttributeError(f"Unknown attribute: {name!r}") from None


def required_attribute(action: str) -> Optional[AttributeName]:
    """Attribute an action requires, or None for unmapped actions."""
    return ACTION_ATTRIBUTES.get(action)


def blocking_restriction(
    held: Iterable[AttributeName], action: str
) -> Optional[AttributeName]:
    """First held restriction whose blocked prefixes match the action."""
    for name in held:
        for prefix in RESTRICTION_BLOCKS.get(name, ()):
            if action.startswith(prefix):
                return name
    return None


def clearance_level(held: Iterable[AttributeName]) -> int:
    """
    Highest clearance tier among held attributes.

    Returns 0 when the subject holds no clearance attribute.
    """
    levels = [
        CATALOG[name].level
        for name in held
        if CATALOG[name].capability == Capability.CLEARANCE
    ]
    return max(levels, default=0)


def validate_catalog() -> None:
    """
    Check that every attribute table is consistent with the catalog.

    Called once at application startup.

    Raises:
        CatalogError: Describing every inconsistency found
    """
    problems = []

    missing = [name.value for name in AttributeName if name not in CATALOG]
    if missing:
        problems.append(f"attributes without catalog entry: {missing}")

    for action, name in ACTION_ATTRIBUTES.items():
        if name not in CATALOG:
            problems.append(f"action {action.value} maps to unknown {name.value}")
        elif CATALOG[name].category != AttributeCategory.PERMISSION:
            problems.append(f"action {action.value} maps to non-permission {name.value}")

    action_values = [a.value for a in Action]
    for name, prefixes in RESTRICTION_BLOCKS.items():
        spec = CATALOG.get(name)
        if spec is None or spec.category != AttributeCategory.RESTRICTION:
            problems.append(f"{name.value} is not a restriction attribute")
        for prefix in prefixes:
            if not any(value.startswith(prefix) for value in action_values):
                problems.append(f"{name.value} blocks {prefix!r}, which matches no action")

    for spec in CATALOG.values():
        if not 1 <= spec.level <= 4:
            problems.append(f"{spec.name.value} has level {spec.level} outside 1..4")

    for classification in Classification:
        if classification not in CLASSIFICATION_LEVELS:
            problems.append(f"classification {classification.value} has no level")

    if problems:
        raise CatalogError("; ".join(problems))
