"""
Webhook delivery archive - every verified provider webhook is recorded before
any event-level processing, so even a total downstream failure leaves an
auditable record. Only `status` changes after insert.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from dripline.database import Base

DELIVERY_RECEIVED = "received"
DELIVERY_PROCESSED = "processed"
DELIVERY_PARTIAL_FAILURE = "partial_failure"


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    provider: Mapped[str] = mapped_column(String(50), nullable=False)  # sendgrid
    event_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # single event type, or "batch"
    message_id: Mapped[Optional[str]] = mapped_column(
        String(255)
    )  # outbound message id, single-event deliveries only

    payload: Mapped[list] = mapped_column(JSONB, nullable=False)
    signature: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DELIVERY_RECEIVED, server_default=DELIVERY_RECEIVED
    )  # received, processed, partial_failure
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_webhook_deliveries_tenant_provider", "tenant_id", "provider"),
        Index("ix_webhook_deliveries_received_at", "received_at"),
    )

    @property
    def total_events(self) -> int:
        return len(self.payload) if isinstance(self.payload, list) else 1

    def __repr__(self) -> str:
        return f"<WebhookDelivery {self.provider}:{self.event_type} ({self.status})>"
