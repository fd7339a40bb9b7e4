"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("role", sa.String(), nullable=False),
    sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "api_tokens",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("token_hash", sa.String(), nullable=False),
    sa.Column("token_hint", sa.String(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"], unique=False)
  op.create_index("ix_api_tokens_token_hash", "api_tokens", ["token_hash"], unique=True)

  op.create_table(
    "tasks",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    sa.Column("assignee_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("status", sa.String(), nullable=False, server_default="ToDo"),
    sa.Column("priority", sa.String(), nullable=False, server_default="Medium"),
    sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
    sa.Column("project_id", sa.String(), nullable=True),
    sa.Column("attachments", sa.JSON(), nullable=False),
    sa.Column("voice_notes", sa.JSON(), nullable=False),
    sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_tasks_assignee_id", "tasks", ["assignee_id"], unique=False)
  op.create_index("ix_tasks_priority", "tasks", ["priority"], unique=False)
  op.create_index("ix_tasks_status_created", "tasks", ["status", "created_at"], unique=False)

  op.create_table(
    "audit_events",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("task_id", sa.String(36), nullable=True),
    sa.Column("actor_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", sa.JSON(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_audit_events_task_id", "audit_events", ["task_id"], unique=False)


def downgrade() -> None:
  op.drop_index("ix_audit_events_task_id", table_name="audit_events")
  op.drop_table("audit_events")
  op.drop_index("ix_tasks_status_created", table_name="tasks")
  op.drop_index("ix_tasks_priority", table_name="tasks")
  op.drop_index("ix_tasks_assignee_id", table_name="tasks")
  op.drop_table("tasks")
  op.drop_index("ix_api_tokens_token_hash", table_name="api_tokens")
  op.drop_index("ix_api_tokens_user_id", table_name="api_tokens")
  op.drop_table("api_tokens")
  op.drop_index("ix_users_email", table_name="users")
  op.drop_table("users")
