"""
SQLAlchemy database models for caseguard.

Tables:
- users_profile: subjects and their platform role
- abac_attributes / user_attributes: attribute catalog and grants
- policy_enforcement_log: one row per policy decision (append only)
- audit_access_log: meta-audit of audit view reads
- identity_vault: case-scoped pseudonyms, unique per (user, case)
- case_assignments: active pseudonymous assignee per case
- ephemeral_credentials: hashed single-use case tokens

Column types are portable: PostgreSQL (asyncpg, JSONB) in production,
SQLite (aiosqlite) in tests. Identifiers are stored as 36-char strings and
timestamps as naive UTC.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from caseguard.models import utcnow

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class UserProfile(Base):
    """Subject known to the platform."""

    __tablename__ = "users_profile"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ABACAttribute(Base):
    """Catalog entry, seeded from caseguard.abac.attributes.CATALOG."""

    __tablename__ = "abac_attributes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    description: Mapped[Optional[str]] = mapped_column(Text)


class UserAttribute(Base):
    """
    Attribute granted to a subject.

    Active while expires_at is null or in the future. Revocation sets
    expires_at rather than deleting the row.
    """

    __tablename__ = "user_attributes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users_profile.id"), nullable=False
    )
    attribute_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("abac_attributes.id"), nullable=False
    )
    granted_by: Mapped[str] = mapped_column(String(36), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    reason: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_user_attributes_user_expires", "user_id", "expires_at"),
    )


class PolicyEnforcementLog(Base):
    """
    Policy decision log.

    Rows are inserted once and never updated. Auditors only ever see the
    anonymized projection.
    """

    __tablename__ = "policy_enforcement_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100))
    result: Mapped[str] = mapped_column(String(10), nullable=False)  # 'allow' / 'deny'
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    policy_name: Mapped[Optional[str]] = mapped_column(String(100))
    # "metadata" is reserved on declarative classes
    context_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONType)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_policy_log_timestamp", "timestamp"),
        Index("ix_policy_log_action", "action"),
    )


class AuditAccessLog(Base):
    """Who read which audit view, with which parameters."""

    __tablename__ = "audit_access_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    accessor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    view_accessed: Mapped[str] = mapped_column(String(100), nullable=False)
    query_params: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)
    accessed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class IdentityVaultEntry(Base):
    """Pseudonym for one (subject, case) pair."""

    __tablename__ = "identity_vault"

    anon_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    case_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "case_id", name="uq_identity_vault_user_case"),
    )


class CaseAssignmentRecord(Base):
    """Active pseudonymous assignee of a case."""

    __tablename__ = "case_assignments"

    case_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    anon_actor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("identity_vault.anon_id"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class EphemeralCredentialRecord(Base):
    """Hashed single-use case credential. The raw token is never stored."""

    __tablename__ = "ephemeral_credentials"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(36), nullable=False)
    issued_to: Mapped[str] = mapped_column(String(36), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(
        "created_at", DateTime, nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
