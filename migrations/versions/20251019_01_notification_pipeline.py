"""notification pipeline tables

Revision ID: 20251019_01
Revises: None
Create Date: 2025-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20251019_01"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), **kw)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("expo_push_token", sa.String(), nullable=True),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "reminders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("due_at", nullable=False),
        sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
        sa.Column("recurrence", sa.String(), nullable=True),
        sa.Column("notification_channels", sa.JSON(), nullable=False),
        sa.Column("notification_lead_times", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("location_trigger", sa.JSON(), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("due_at", nullable=False),
        _ts("end_at", nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "scheduled_notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reminder_id", sa.String(length=36), sa.ForeignKey("reminders.id", ondelete="CASCADE"), nullable=True),
        sa.Column("event_id", sa.String(length=36), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=True),
        _ts("fire_at", nullable=False),
        sa.Column("lead_time_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("channels", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("claimed_at", nullable=True),
        _ts("sent_at", nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "(reminder_id IS NULL) <> (event_id IS NULL)",
            name="ck_scheduled_notifications_one_item",
        ),
    )
    op.create_index(
        "ix_scheduled_notifications_status_fire_at",
        "scheduled_notifications",
        ["status", "fire_at"],
    )
    op.create_index("ix_scheduled_notifications_reminder_id", "scheduled_notifications", ["reminder_id"])
    op.create_index("ix_scheduled_notifications_event_id", "scheduled_notifications", ["event_id"])
    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("job_id", sa.String(length=36), nullable=True),
        sa.Column("reminder_id", sa.String(length=36), nullable=True),
        sa.Column("event_id", sa.String(length=36), nullable=True),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        _ts("sent_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notification_logs_user_id_sent_at", "notification_logs", ["user_id", "sent_at"])


def downgrade() -> None:
    op.drop_index("ix_notification_logs_user_id_sent_at", table_name="notification_logs")
    op.drop_table("notification_logs")
    op.drop_index("ix_scheduled_notifications_event_id", table_name="scheduled_notifications")
    op.drop_index("ix_scheduled_notifications_reminder_id", table_name="scheduled_notifications")
    op.drop_index("ix_scheduled_notifications_status_fire_at", table_name="scheduled_notifications")
    op.drop_table("scheduled_notifications")
    op.drop_table("events")
    op.drop_table("reminders")
    op.drop_table("users")
