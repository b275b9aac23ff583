"""
OutboundMessage model - a message sent (or queued for sending) by a campaign
step. The webhook path only reads it to resolve event -> campaign.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from dripline.database import Base


class OutboundMessage(Base):
    __tablename__ = "outbound_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    channel: Mapped[str] = mapped_column(String(20), default="email", nullable=False)
    node_id: Mapped[Optional[str]] = mapped_column(String(100))

    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255))
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)

    content: Mapped[Optional[dict]] = mapped_column(JSONB)  # {"subject", "body", "channel"}
    state: Mapped[str] = mapped_column(
        String(20), default="queued", nullable=False
    )  # queued, sent, failed

    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "dedupe_key", name="uq_outbound_messages_dedupe"),
        Index("ix_outbound_messages_campaign_id", "campaign_id"),
        Index("ix_outbound_messages_provider_id", "provider_message_id"),
    )

    def __repr__(self) -> str:
        return f"<OutboundMessage {self.channel} node={self.node_id} ({self.state})>"
