"""Campaign execution core - webhook archive, events, campaigns and task queue.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Raw webhook deliveries
    op.create_table(
        "webhook_deliveries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("message_id", sa.String(255)),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("signature", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_deliveries_tenant_provider", "webhook_deliveries", ["tenant_id", "provider"])
    op.create_index("ix_webhook_deliveries_received_at", "webhook_deliveries", ["received_at"])

    # Normalized message events
    op.create_table(
        "message_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("message_id", sa.String(255), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("event_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("provider_event_id", sa.String(255)),
        sa.Column("data", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "provider_event_id", name="uq_message_events_tenant_provider_event"),
    )
    op.create_index("ix_message_events_message_type", "message_events", ["message_id", "type"])

    # Outbound messages
    op.create_table(
        "outbound_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True)),
        sa.Column("channel", sa.String(20), nullable=False, server_default="email"),
        sa.Column("node_id", sa.String(100)),
        sa.Column("provider_message_id", sa.String(255)),
        sa.Column("dedupe_key", sa.String(255), nullable=False),
        sa.Column("content", postgresql.JSONB),
        sa.Column("state", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True)),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "dedupe_key", name="uq_outbound_messages_dedupe"),
    )
    op.create_index("ix_outbound_messages_campaign_id", "outbound_messages", ["campaign_id"])
    op.create_index("ix_outbound_messages_provider_id", "outbound_messages", ["provider_message_id"])

    # Contact campaigns
    op.create_table(
        "contact_campaigns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True)),
        sa.Column("channel", sa.String(20), nullable=False, server_default="email"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("current_node_id", sa.String(100)),
        sa.Column("plan_json", postgresql.JSONB, nullable=False),
        sa.Column("plan_version", sa.String(20), nullable=False, server_default="1.0"),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_contact_campaigns_tenant_status", "contact_campaigns", ["tenant_id", "status"])

    # Campaign transition audit log
    op.create_table(
        "campaign_transitions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("from_node_id", sa.String(100)),
        sa.Column("to_node_id", sa.String(100), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("event_ref", sa.String(64)),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_campaign_transitions_campaign_id", "campaign_transitions", ["campaign_id"])

    # Task queue
    op.create_table(
        "task_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("task_type", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer, server_default="5"),
        sa.Column("retry_count", sa.Integer, server_default="0"),
        sa.Column("max_retries", sa.Integer, server_default="3"),
        sa.Column("backoff_seconds", sa.Integer, server_default="30"),
        sa.Column("dedup_key", sa.String(255)),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("error_message", sa.Text),
        sa.Column("result_data", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_task_queue_processing", "task_queue", ["status", "scheduled_at", "priority"])
    op.create_index("ix_task_queue_dedup_key", "task_queue", ["dedup_key"])


def downgrade() -> None:
    op.drop_table("task_queue")
    op.drop_table("campaign_transitions")
    op.drop_table("contact_campaigns")
    op.drop_table("outbound_messages")
    op.drop_table("message_events")
    op.drop_table("webhook_deliveries")
