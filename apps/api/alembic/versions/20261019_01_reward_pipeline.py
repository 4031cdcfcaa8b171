"""Create reward events, inventory, request and workflow tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


EVENT_TYPES = (
    "DAILY_LOGIN",
    "INVITE_FRIENDS",
    "QUEST_COMPLETE",
    "LEVEL_UP",
    "PROFILE_COMPLETE",
    "PURCHASE",
    "ACHIEVEMENT",
    "SOCIAL_SHARE",
    "CONTENT_CREATE",
    "SPECIAL_EVENT",
)
REWARD_TYPES = ("POINTS", "ITEM", "COUPON", "CURRENCY", "SUBSCRIPTION", "BADGE", "TITLE")
REQUEST_STATUSES = ("PENDING", "APPROVED", "COMPLETED", "REJECTED", "FAILED")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "reward_events",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("event_type", sa.Enum(*EVENT_TYPES, name="reward_event_type"), nullable=False),
        sa.Column("condition", sa.JSON(), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Enum("ACTIVE", "INACTIVE", name="reward_event_status"), nullable=False),
        sa.Column("approval_mode", sa.Enum("AUTO", "MANUAL", name="reward_approval_mode"), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_date > start_date", name="ck_reward_events_date_range"),
    )
    op.create_index("ix_reward_events_event_type", "reward_events", ["event_type"])
    op.create_index("ix_reward_events_status_window", "reward_events", ["status", "start_date", "end_date"])

    op.create_table(
        "rewards",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("reward_type", sa.Enum(*REWARD_TYPES, name="reward_type"), nullable=False),
        sa.Column("value", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="-1"),
        sa.Column("event_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("quantity >= -1", name="ck_rewards_quantity_floor"),
    )
    op.create_index("ix_rewards_event_id", "rewards", ["event_id"])

    op.create_table(
        "event_logs",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_event_logs_user_type", "event_logs", ["user_id", "event_type"])
    op.create_index("ix_event_logs_timestamp", "event_logs", ["timestamp"])

    op.create_table(
        "reward_requests",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("event_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reward_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.Enum(*REQUEST_STATUSES, name="reward_request_status"), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=False, unique=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.String(64), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_reward_requests_user_event", "reward_requests", ["user_id", "event_id"])
    op.create_index("ix_reward_requests_status", "reward_requests", ["status"])

    op.create_table(
        "reward_request_state_events",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("request_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "event_type",
            sa.Enum("STATE_CHANGE", "NOTE", name="reward_request_state_event_type"),
            nullable=False,
        ),
        sa.Column(
            "actor_type",
            sa.Enum("SYSTEM", "USER", "ADMIN", "WORKFLOW", name="reward_request_actor_type"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("from_status", sa.String(32), nullable=True),
        sa.Column("to_status", sa.String(32), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["request_id"], ["reward_requests.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_reward_request_state_events_request",
        "reward_request_state_events",
        ["request_id", "created_at"],
    )

    op.create_table(
        "workflow_runs",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("run_key", sa.String(255), nullable=False, unique=True),
        sa.Column("function_id", sa.String(128), nullable=False),
        sa.Column("trigger_name", sa.String(128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("queued", "running", "succeeded", "failed", name="workflow_run_status"),
            nullable=False,
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("result_payload", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_workflow_runs_status_next_attempt", "workflow_runs", ["status", "next_attempt_at"])

    op.create_table(
        "workflow_step_results",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("run_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("step_name", sa.String(128), nullable=False),
        sa.Column("output", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["workflow_runs.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("run_id", "step_name", name="uq_workflow_step_results_run_step"),
    )


def downgrade() -> None:
    op.drop_table("workflow_step_results")
    op.drop_index("ix_workflow_runs_status_next_attempt", table_name="workflow_runs")
    op.drop_table("workflow_runs")
    op.drop_index("ix_reward_request_state_events_request", table_name="reward_request_state_events")
    op.drop_table("reward_request_state_events")
    op.drop_index("ix_reward_requests_status", table_name="reward_requests")
    op.drop_index("ix_reward_requests_user_event", table_name="reward_requests")
    op.drop_table("reward_requests")
    op.drop_index("ix_event_logs_timestamp", table_name="event_logs")
    op.drop_index("ix_event_logs_user_type", table_name="event_logs")
    op.drop_table("event_logs")
    op.drop_index("ix_rewards_event_id", table_name="rewards")
    op.drop_table("rewards")
    op.drop_index("ix_reward_events_status_window", table_name="reward_events")
    op.drop_index("ix_reward_events_event_type", table_name="reward_events")
    op.drop_table("reward_events")
    for enum_name in (
        "workflow_run_status",
        "reward_request_actor_type",
        "reward_request_state_event_type",
        "reward_request_status",
        "reward_type",
        "reward_approval_mode",
        "reward_event_status",
        "reward_event_type",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
