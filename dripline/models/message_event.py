"""
MessageEvent model - one normalized provider occurrence (delivered, opened,
bounced, ...) tied to a previously sent message. Immutable after insert.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from dripline.database import Base


class MessageEvent(Base):
    __tablename__ = "message_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Outbound message id when known, otherwise the provider's message id or "unknown"
    message_id: Mapped[str] = mapped_column(String(255), nullable=False)

    type: Mapped[str] = mapped_column(
        String(30), nullable=False
    )  # delivered, bounced, dropped, opened, clicked, spamreport, unsubscribed, resubscribed
    event_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )  # provider occurrence time, not receipt time

    provider_event_id: Mapped[Optional[str]] = mapped_column(String(255))

    data: Mapped[Optional[dict]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "provider_event_id", name="uq_message_events_tenant_provider_event"
        ),
        Index("ix_message_events_message_type", "message_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<MessageEvent {self.type} message={self.message_id}>"
