"""Decision trail: decisions, versions, objects/options, audit log, share links

Revision ID: a1d7e3c0f101
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "a1d7e3c0f101"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "decisions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(100)),
        sa.Column("owner_id", sa.String(36)),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("due_date", sa.Date()),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("current_version_id", sa.String(36)),
        sa.Column("current_version_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("audit_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_decision_project", "decisions", ["project_id"])
    op.create_index("idx_decision_status", "decisions", ["status"])

    op.create_table(
        "decision_objects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("decision_id", sa.String(36), sa.ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_dobj_decision_order", "decision_objects", ["decision_id", "order_index"])

    op.create_table(
        "decision_options",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("decision_object_id", sa.String(36), sa.ForeignKey("decision_objects.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("media_url", sa.String(1024)),
        sa.Column("cost", sa.JSON()),
        sa.Column("dependencies", sa.JSON(), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_recommended", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "decision_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("decision_id", sa.String(36), sa.ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("snapshot", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("author_id", sa.String(36)),
        sa.Column("author_name", sa.String(255)),
        sa.Column("note", sa.Text()),
        sa.UniqueConstraint("decision_id", "version_number", name="uq_decision_version_number"),
    )

    op.create_table(
        "decision_audit_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("decision_id", sa.String(36), sa.ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version_id", sa.String(36), sa.ForeignKey("decision_versions.id", ondelete="SET NULL")),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("user_id", sa.String(36)),
        sa.Column("user_name", sa.String(255)),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("decision_id", "sequence", name="uq_audit_decision_sequence"),
    )
    op.create_index("idx_audit_decision_ts", "decision_audit_log", ["decision_id", "timestamp"])
    op.create_index("idx_audit_action", "decision_audit_log", ["action"])

    op.create_table(
        "share_links",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("decision_id", sa.String(36), sa.ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("token", sa.String(128), nullable=False, unique=True),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("access_scope", sa.String(20), nullable=False, server_default="read"),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("revoked_at", sa.DateTime(timezone=True)),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_usage", sa.Integer()),
        sa.Column("last_used_at", sa.DateTime(timezone=True)),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "uq_share_links_active_scope",
        "share_links",
        ["decision_id", "access_scope"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active IS TRUE"),
    )


def downgrade():
    op.drop_index("uq_share_links_active_scope", table_name="share_links")
    op.drop_table("share_links")
    op.drop_index("idx_audit_action", table_name="decision_audit_log")
    op.drop_index("idx_audit_decision_ts", table_name="decision_audit_log")
    op.drop_table("decision_audit_log")
    op.drop_table("decision_versions")
    op.drop_table("decision_options")
    op.drop_index("idx_dobj_decision_order", table_name="decision_objects")
    op.drop_table("decision_objects")
    op.drop_index("idx_decision_status", table_name="decisions")
    op.drop_index("idx_decision_project", table_name="decisions")
    op.drop_table("decisions")
