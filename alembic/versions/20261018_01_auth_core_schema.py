"""auth core schema

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _column_exists(inspector: sa.Inspector, table_name: str, column_name: str) -> bool:
    return any(column["name"] == column_name for column in inspector.get_columns(table_name))


def _ensure_accounts(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "accounts"):
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("display_name", sa.String(length=255), nullable=True),
            sa.Column("password_hash", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="USER"),
            sa.Column("is_email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("auth_provider", sa.String(length=32), nullable=False, server_default="EMAIL"),
            sa.Column("oauth_provider", sa.String(length=32), nullable=True),
            sa.Column("oauth_subject", sa.String(length=255), nullable=True),
            sa.Column("avatar_url", sa.String(length=1024), nullable=True),
            sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("last_failed_login_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.UniqueConstraint("oauth_provider", "oauth_subject", name="uq_accounts_oauth_identity"),
        )
        op.create_index("ix_accounts_id", "accounts", ["id"], unique=False)
        op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)
        return

    # Lockout columns were added after the first deployments.
    if not _column_exists(inspector, "accounts", "failed_login_attempts"):
        op.add_column(
            "accounts",
            sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        )
    if not _column_exists(inspector, "accounts", "last_failed_login_at"):
        op.add_column("accounts", sa.Column("last_failed_login_at", sa.DateTime(timezone=True), nullable=True))
    if not _column_exists(inspector, "accounts", "locked_until"):
        op.add_column("accounts", sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True))


def _ensure_sessions(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "auth_sessions"):
        return
    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("refresh_token_hash", sa.String(length=128), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "replaced_by_id",
            sa.Integer(),
            sa.ForeignKey("auth_sessions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_auth_sessions_id", "auth_sessions", ["id"], unique=False)
    op.create_index("ix_auth_sessions_account_id", "auth_sessions", ["account_id"], unique=False)
    op.create_index("ix_auth_sessions_refresh_token_hash", "auth_sessions", ["refresh_token_hash"], unique=True)
    op.create_index("ix_auth_sessions_expires_at", "auth_sessions", ["expires_at"], unique=False)
    op.create_index("ix_auth_sessions_revoked_at", "auth_sessions", ["revoked_at"], unique=False)


def _ensure_oauth_codes(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "oauth_authorization_codes"):
        return
    op.create_table(
        "oauth_authorization_codes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=128), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_oauth_authorization_codes_id", "oauth_authorization_codes", ["id"], unique=False)
    op.create_index("ix_oauth_authorization_codes_code", "oauth_authorization_codes", ["code"], unique=True)
    op.create_index(
        "ix_oauth_authorization_codes_account_id", "oauth_authorization_codes", ["account_id"], unique=False
    )
    op.create_index(
        "ix_oauth_authorization_codes_expires_at", "oauth_authorization_codes", ["expires_at"], unique=False
    )


def _ensure_account_tokens(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "account_tokens"):
        return
    op.create_table(
        "account_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("purpose", sa.String(length=32), nullable=False),
        sa.Column("token_hash", sa.String(length=128), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_account_tokens_id", "account_tokens", ["id"], unique=False)
    op.create_index("ix_account_tokens_account_id", "account_tokens", ["account_id"], unique=False)
    op.create_index("ix_account_tokens_purpose", "account_tokens", ["purpose"], unique=False)
    op.create_index("ix_account_tokens_token_hash", "account_tokens", ["token_hash"], unique=True)


def _ensure_audit_logs(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "audit_logs"):
        return
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"], unique=False)
    op.create_index("ix_audit_logs_account_id", "audit_logs", ["account_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    _ensure_accounts(sa.inspect(bind))
    _ensure_sessions(sa.inspect(bind))
    _ensure_oauth_codes(sa.inspect(bind))
    _ensure_account_tokens(sa.inspect(bind))
    _ensure_audit_logs(sa.inspect(bind))


def downgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    for table_name in (
        "audit_logs",
        "account_tokens",
        "oauth_authorization_codes",
        "auth_sessions",
        "accounts",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
