"""Initial tables

Revision ID: 0001
Revises:
Create Date: 2025-02-10

Creates users, cdns, invites, invite_uploads and audit_logs.
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(254), unique=True, nullable=False),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("cdn_ids", sa.JSON, nullable=False),
        sa.Column("api_key_prefix", sa.String(16), nullable=True),
        sa.Column("api_key_hash", sa.String(128), nullable=True),
        sa.Column("api_key_generated_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_users_api_key_prefix", "users", ["api_key_prefix"])

    op.create_table(
        "cdns",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(50), unique=True, nullable=False),
        sa.Column("bucket", sa.String(63), nullable=False),
        sa.Column("prefix", sa.String(200), nullable=False),
        sa.Column("public_base", sa.String(255), nullable=True),
        sa.Column("owner_ids", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "invites",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("label", sa.String(100), nullable=False),
        sa.Column(
            "cdn_id",
            sa.String(36),
            sa.ForeignKey("cdns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("allowed_mime_types", sa.JSON, nullable=False),
        sa.Column("allowed_extensions", sa.JSON, nullable=False),
        sa.Column("max_size_bytes", sa.Integer, nullable=False),
        sa.Column("max_uses", sa.Integer, nullable=True),
        sa.Column("remaining_uses", sa.Integer, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("upload_prefix_template", sa.String(200), nullable=False),
        sa.Column("upload_prefix", sa.String(512), nullable=False),
        sa.Column("notify_emails", sa.JSON, nullable=False),
        sa.Column("notes", sa.String(500), nullable=False),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
    )
    op.create_index("ix_invites_token_hash", "invites", ["token_hash"], unique=True)
    op.create_index("ix_invites_cdn_id", "invites", ["cdn_id"])
    op.create_index("ix_invites_status", "invites", ["status"])

    op.create_table(
        "invite_uploads",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "invite_id",
            sa.String(36),
            sa.ForeignKey("invites.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key", sa.String(1024), nullable=False),
        sa.Column("size", sa.Integer, nullable=False),
        sa.Column("content_type", sa.String(255), nullable=False),
        sa.Column("extension", sa.String(32), nullable=False),
        sa.Column("etag", sa.String(255), nullable=True),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("uploaded_at", sa.DateTime, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error", sa.String(500), nullable=True),
    )
    op.create_index("ix_invite_uploads_invite_id", "invite_uploads", ["invite_id"])
    op.create_index("ix_invite_uploads_uploaded_at", "invite_uploads", ["uploaded_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("details", sa.JSON, nullable=False),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_invite_uploads_uploaded_at", table_name="invite_uploads")
    op.drop_index("ix_invite_uploads_invite_id", table_name="invite_uploads")
    op.drop_table("invite_uploads")
    op.drop_index("ix_invites_status", table_name="invites")
    op.drop_index("ix_invites_cdn_id", table_name="invites")
    op.drop_index("ix_invites_token_hash", table_name="invites")
    op.drop_table("invites")
    op.drop_table("cdns")
    op.drop_index("ix_users_api_key_prefix", table_name="users")
    op.drop_table("users")
