"""Initial schema: organizations, klient with 2FA columns, sessions, blacklist, audit.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 10:00:00

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("navn", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        _created_at(),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "klient",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("epost", sa.String(255), nullable=False),
        sa.Column("navn", sa.String(255), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "organization_id",
            sa.Integer(),
            sa.ForeignKey("organizations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("aktiv", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("totp_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("totp_secret_encrypted", sa.Text(), nullable=True),
        sa.Column("totp_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("backup_codes_hash", sa.JSON(), nullable=True),
        sa.Column("totp_recovery_codes_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("totp_last_used_step", sa.BigInteger(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_klient_epost", "klient", ["epost"], unique=True)
    op.create_index("ix_klient_organization_id", "klient", ["organization_id"])

    op.create_table(
        "active_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_type", sa.String(20), nullable=False, server_default="klient"),
        sa.Column("jti", sa.String(64), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("device_info", sa.String(255), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
    )
    op.create_index("ix_active_sessions_user_id", "active_sessions", ["user_id"])
    op.create_index("ix_active_sessions_jti", "active_sessions", ["jti"], unique=True)
    op.create_index("ix_active_sessions_expires_at", "active_sessions", ["expires_at"])

    op.create_table(
        "token_blacklist",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("jti", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_type", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
    )
    op.create_index("ix_token_blacklist_jti", "token_blacklist", ["jti"], unique=True)
    op.create_index("ix_token_blacklist_expires_at", "token_blacklist", ["expires_at"])

    op.create_table(
        "totp_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_type", sa.String(20), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_totp_audit_log_user_id", "totp_audit_log", ["user_id"])
    op.create_index("ix_totp_audit_log_action", "totp_audit_log", ["action"])

    op.create_table(
        "totp_pending_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_type", sa.String(20), nullable=False, server_default="klient"),
        sa.Column("session_token_hash", sa.String(64), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
    )
    op.create_index("ix_totp_pending_sessions_user_id", "totp_pending_sessions", ["user_id"])
    op.create_index(
        "ix_totp_pending_sessions_session_token_hash",
        "totp_pending_sessions",
        ["session_token_hash"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_table("totp_pending_sessions")
    op.drop_table("totp_audit_log")
    op.drop_table("token_blacklist")
    op.drop_table("active_sessions")
    op.drop_table("klient")
    op.drop_table("organizations")
