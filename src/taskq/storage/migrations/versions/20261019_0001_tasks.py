"""Create the tasks table."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("function_name", sa.String(), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_function_name", "tasks", ["function_name"], unique=False)
    op.create_index(
        "idx_tasks_status_updated",
        "tasks",
        ["status", "updated_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_tasks_status_updated", table_name="tasks")
    op.drop_index("ix_tasks_function_name", table_name="tasks")
    op.drop_table("tasks")
