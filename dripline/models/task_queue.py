"""
TaskQueue model - durable jobs that drive campaigns forward between webhooks.
Rows carry a publish-side dedup key of the form campaign:node:ref so a
terminal campaign can cancel everything still queued under its prefix.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from dripline.database import Base

TASK_PENDING = "pending"
TASK_PROCESSING = "processing"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"
TASK_CANCELED = "canceled"


class TaskQueue(Base):
    __tablename__ = "task_queue"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSONB)
    dedup_key: Mapped[Optional[str]] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(String(20), default=TASK_PENDING, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=5)  # higher runs first

    # Retry bookkeeping; the worker reschedules with exponential backoff
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    backoff_seconds: Mapped[int] = mapped_column(Integer, default=30)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    result_data: Mapped[Optional[dict]] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_task_queue_processing", "status", "scheduled_at", "priority"),
        Index("ix_task_queue_dedup_key", "dedup_key"),
    )

    @property
    def retries_exhausted(self) -> bool:
        return (self.retry_count or 0) >= (self.max_retries or 0)

    def __repr__(self) -> str:
        return f"<TaskQueue {self.task_type} {self.dedup_key or ''} ({self.status})>"
