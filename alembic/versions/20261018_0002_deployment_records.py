"""Deployment result log."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "deployment_records",
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("deployment_id", sa.String(), nullable=True),
        sa.Column("project_name", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=True),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("custom_domain", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_kind", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("record_id"),
    )
    op.create_index(
        "idx_deployment_records_platform_deployment",
        "deployment_records",
        ["platform", "deployment_id"],
        unique=False,
    )
    op.create_index(
        "idx_deployment_records_created",
        "deployment_records",
        ["created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_deployment_records_created", table_name="deployment_records")
    op.drop_index(
        "idx_deployment_records_platform_deployment",
        table_name="deployment_records",
    )
    op.drop_table("deployment_records")
