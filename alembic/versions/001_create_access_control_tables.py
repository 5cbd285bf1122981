"""Create access-control tables (attempts, lockouts, resource secrets, sessions, audit).

Revision ID: 001_access_control
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

revision: str = "001_access_control"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True
    )


def _timestamp(name: str, *, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.text("NOW()") if default else None,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "auth_attempts",
        _id_column(),
        sa.Column("subject_id", sa.Text(), nullable=False),
        sa.Column("subject_kind", sa.String(32), nullable=False),
        sa.Column("principal_id", sa.Text(), nullable=True),
        sa.Column("outcome", sa.String(32), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("origin_fingerprint", sa.Text(), nullable=True),
        _timestamp("occurred_at"),
    )
    op.create_index(
        "idx_auth_attempts_subject_time",
        "auth_attempts",
        ["subject_kind", "subject_id", "outcome", "occurred_at"],
    )
    op.create_index(
        "idx_auth_attempts_subject_principal_time",
        "auth_attempts",
        ["subject_kind", "subject_id", "principal_id", "occurred_at"],
    )
    op.create_index("idx_auth_attempts_time", "auth_attempts", ["occurred_at"])

    op.create_table(
        "account_lockouts",
        _id_column(),
        sa.Column("principal_id", sa.Text(), nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        _timestamp("locked_at"),
        _timestamp("unlocks_at", nullable=True, default=False),
        sa.Column("is_permanent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("attempts_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unlock_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("issuing_admin", sa.Text(), nullable=True),
        _timestamp("deactivated_at", nullable=True, default=False),
    )
    op.create_index(
        "uq_account_lockouts_active_principal",
        "account_lockouts",
        ["principal_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "idx_account_lockouts_principal_time", "account_lockouts", ["principal_id", "locked_at"]
    )

    op.create_table(
        "resource_secrets",
        _id_column(),
        sa.Column("resource_id", sa.Text(), nullable=False, unique=True),
        sa.Column("secret_hash", sa.Text(), nullable=False),
        sa.Column("salt", sa.Text(), nullable=False),
        sa.Column("hint", sa.Text(), nullable=True),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("lockout_window_seconds", sa.Integer(), nullable=False, server_default="300"),
        sa.Column("created_by", sa.Text(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "access_sessions",
        _id_column(),
        sa.Column("resource_id", sa.Text(), nullable=False),
        sa.Column("principal_id", sa.Text(), nullable=False),
        sa.Column("device_fingerprint", sa.Text(), nullable=True),
        sa.Column("token", sa.Text(), nullable=False, unique=True),
        _timestamp("issued_at"),
        _timestamp("expires_at", default=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("invalidated_at", nullable=True, default=False),
    )
    op.create_index(
        "idx_access_sessions_lookup",
        "access_sessions",
        ["resource_id", "principal_id", "is_active"],
    )
    op.create_index("idx_access_sessions_expires", "access_sessions", ["expires_at"])
    op.execute(
        "CREATE UNIQUE INDEX uq_access_sessions_active_tuple ON access_sessions "
        "(resource_id, principal_id, COALESCE(device_fingerprint, '')) WHERE is_active"
    )

    op.create_table(
        "security_audit_events",
        _id_column(),
        sa.Column("principal_id", sa.Text(), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_data", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("severity", sa.String(32), nullable=False),
        sa.Column("origin_fingerprint", sa.Text(), nullable=True),
        _timestamp("occurred_at"),
    )
    op.create_index(
        "idx_security_audit_principal_time",
        "security_audit_events",
        ["principal_id", "occurred_at"],
    )
    op.create_index(
        "idx_security_audit_type_time", "security_audit_events", ["event_type", "occurred_at"]
    )

    op.create_table(
        "principal_presence",
        sa.Column("principal_id", sa.Text(), primary_key=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="offline"),
        _timestamp("last_activity"),
    )

    op.create_table(
        "password_history",
        _id_column(),
        sa.Column("principal_id", sa.Text(), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index(
        "idx_password_history_principal_time", "password_history", ["principal_id", "created_at"]
    )

    op.create_table(
        "two_factor_enrollments",
        _id_column(),
        sa.Column("principal_id", sa.Text(), nullable=False, unique=True),
        sa.Column("secret", sa.Text(), nullable=False),
        sa.Column(
            "backup_code_hashes", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("enabled_at", nullable=True, default=False),
        _timestamp("updated_at"),
    )


def downgrade() -> None:
    op.drop_table("two_factor_enrollments")
    op.drop_table("password_history")
    op.drop_table("principal_presence")
    op.drop_table("security_audit_events")
    op.execute("DROP INDEX IF EXISTS uq_access_sessions_active_tuple")
    op.drop_table("access_sessions")
    op.drop_table("resource_secrets")
    op.drop_table("account_lockouts")
    op.drop_table("auth_attempts")
