"""
ContactCampaign model - live execution state of one contact's outreach
sequence. The plan graph is static; only position and status move.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from dripline.database import Base

CAMPAIGN_ACTIVE = "active"
CAMPAIGN_COMPLETED = "completed"


class ContactCampaign(Base):
    __tablename__ = "contact_campaigns"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    channel: Mapped[str] = mapped_column(String(20), default="email", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="draft", nullable=False
    )  # draft, active, paused, completed, stopped
    current_node_id: Mapped[Optional[str]] = mapped_column(String(100))

    plan_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
    plan_version: Mapped[str] = mapped_column(String(20), default="1.0", nullable=False)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_contact_campaigns_tenant_status", "tenant_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == CAMPAIGN_ACTIVE

    def __repr__(self) -> str:
        return f"<ContactCampaign node={self.current_node_id} ({self.status})>"
