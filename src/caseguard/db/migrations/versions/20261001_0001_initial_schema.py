"""Initial schema for caseguard

Revision ID: 0001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users_profile",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("full_name", sa.String(255)),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint(
            "role IN ('super_admin', 'auditor', 'secretary', 'judge')",
            name="ck_users_profile_role",
        ),
    )

    op.create_table(
        "abac_attributes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("description", sa.Text),
        sa.CheckConstraint("level BETWEEN 1 AND 4", name="ck_abac_attributes_level"),
    )

    op.create_table(
        "user_attributes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users_profile.id"), nullable=False),
        sa.Column(
            "attribute_id", sa.Integer, sa.ForeignKey("abac_attributes.id"), nullable=False
        ),
        sa.Column("granted_by", sa.String(36), nullable=False),
        sa.Column("granted_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime),
        sa.Column("reason", sa.Text),
    )
    op.create_index(
        "ix_user_attributes_user_expires", "user_attributes", ["user_id", "expires_at"]
    )

    # Decision log: append only
    op.create_table(
        "policy_enforcement_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(100)),
        sa.Column("result", sa.String(10), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("policy_name", sa.String(100)),
        sa.Column("metadata", postgresql.JSONB),
        sa.Column("timestamp", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("result IN ('allow', 'deny')", name="ck_policy_log_result"),
    )
    op.create_index("ix_policy_log_timestamp", "policy_enforcement_log", ["timestamp"])
    op.create_index("ix_policy_log_action", "policy_enforcement_log", ["action"])

    op.create_table(
        "audit_access_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("accessor_id", sa.String(36), nullable=False),
        sa.Column("view_accessed", sa.String(100), nullable=False),
        sa.Column("query_params", postgresql.JSONB),
        sa.Column("accessed_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "identity_vault",
        sa.Column("anon_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("case_id", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "case_id", name="uq_identity_vault_user_case"),
    )

    op.create_table(
        "case_assignments",
        sa.Column("case_id", sa.String(36), primary_key=True),
        sa.Column(
            "anon_actor_id",
            sa.String(36),
            sa.ForeignKey("identity_vault.anon_id"),
            nullable=False,
        ),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("assigned_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "ephemeral_credentials",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column("case_id", sa.String(36), nullable=False),
        sa.Column("issued_to", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("used_at", sa.DateTime),
    )
    op.create_index(
        "ix_ephemeral_credentials_created_at", "ephemeral_credentials", ["created_at"]
    )

    # Decision rows are never updated or deleted through the application role
    op.execute("REVOKE UPDATE, DELETE ON policy_enforcement_log FROM PUBLIC")


def downgrade() -> None:
    op.drop_index("ix_ephemeral_credentials_created_at", table_name="ephemeral_credentials")
    op.drop_table("ephemeral_credentials")
    op.drop_table("case_assignments")
    op.drop_table("identity_vault")
    op.drop_table("audit_access_log")
    op.drop_index("ix_policy_log_action", table_name="policy_enforcement_log")
    op.drop_index("ix_policy_log_timestamp", table_name="policy_enforcement_log")
    op.drop_table("policy_enforcement_log")
    op.drop_index("ix_user_attributes_user_expires", table_name="user_attributes")
    op.drop_table("user_attributes")
    op.drop_table("abac_attributes")
    op.drop_table("users_profile")
