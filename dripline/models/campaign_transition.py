"""
Campaign transition log - audit trail linking each state change to the event
(or timeout) that caused it.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from dripline.database import Base


class CampaignTransition(Base):
    __tablename__ = "campaign_transitions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    from_node_id: Mapped[Optional[str]] = mapped_column(String(100))
    to_node_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    event_ref: Mapped[Optional[str]] = mapped_column(
        String(64)
    )  # MessageEvent id, or timeout task id
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_campaign_transitions_campaign_id", "campaign_id"),
    )

    def __repr__(self) -> str:
        return f"<CampaignTransition {self.from_node_id}->{self.to_node_id} on {self.event_type}>"
