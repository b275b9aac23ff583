"""
Event recorder - persists one normalized MessageEvent per provider event,
skipping non-recordable types and events already recorded for the tenant.

Each record() call runs on its own session so events in a batch can be
recorded concurrently and fail independently.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dripline.models.message_event import MessageEvent
from dripline.schemas.api_responses import ProcessedEventResult
from dripline.schemas.provider_events import ProviderEventBase
from dripline.services.event_normalizer import derive_message_id, get_mapping

logger = logging.getLogger(__name__)

REASON_NOT_RECORDABLE = "Event type not configured for recording"
REASON_DUPLICATE = "Duplicate event detected"


class EventDeduplicator:
    """Looks up provider event ids already recorded for a tenant."""

    async def is_duplicate(
        self, db: AsyncSession, tenant_id: uuid.UUID, provider_event_id: Optional[str],
    ) -> bool:
        if not provider_event_id:
            return False
        try:
            result = await db.execute(
                select(MessageEvent.id).where(
                    MessageEvent.tenant_id == tenant_id,
                    MessageEvent.provider_event_id == provider_event_id,
                ).limit(1)
            )
            return result.scalar_one_or_none() is not None
        except Exception as e:
            # Lookup failure should not block recording - the unique constraint still holds.
            # Roll back so the insert does not run in an aborted transaction.
            logger.warning(
                "Duplicate check failed for %s: %s. Assuming not duplicate.",
                provider_event_id, str(e),
            )
            await db.rollback()
            return False


class EventRecorder:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        deduplicator: Optional[EventDeduplicator] = None,
        duplicate_detection: bool = True,
        provider: str = "sendgrid",
    ):
        self.session_factory = session_factory
        self.deduplicator = deduplicator or EventDeduplicator()
        self.duplicate_detection = duplicate_detection
        self.provider = provider

    def build_message_event(
        self, tenant_id: uuid.UUID, event: ProviderEventBase, internal_type: str, processed_at: datetime,
    ) -> MessageEvent:
        return MessageEvent(
            tenant_id=tenant_id,
            message_id=derive_message_id(event),
            type=internal_type,
            event_at=datetime.fromtimestamp(event.timestamp, tz=timezone.utc),
            provider_event_id=event.sg_event_id,
            data={
                **event.raw,
                "processedAt": processed_at.isoformat(),
                "provider": self.provider,
                "normalizedType": internal_type,
            },
        )

    async def record(
        self, tenant_id: uuid.UUID, event: ProviderEventBase, processed_at: datetime,
    ) -> ProcessedEventResult:
        """
        Record one event. Returns a skipped result for non-recordable types and
        duplicates; storage errors propagate to the caller.
        """
        mapping = get_mapping(event.event)
        if mapping is None or not mapping.recordable:
            logger.debug("Skipping non-recordable event type %s", event.event)
            return ProcessedEventResult(
                success=True, event_id=event.sg_event_id, event_type=event.event,
                skipped=True, reason=REASON_NOT_RECORDABLE,
            )

        async with self.session_factory() as db:
            if self.duplicate_detection and await self.deduplicator.is_duplicate(
                db, tenant_id, event.sg_event_id
            ):
                logger.info(
                    "Duplicate event skipped: %s", event.sg_event_id,
                    extra={"tenant_id": str(tenant_id), "event_id": event.sg_event_id},
                )
                return self._duplicate(event)

            message_event = self.build_message_event(
                tenant_id, event, mapping.internal_type, processed_at,
            )
            db.add(message_event)
            try:
                await db.commit()
            except IntegrityError:
                # Lost a race with a concurrent delivery of the same event
                await db.rollback()
                logger.info("Duplicate event rejected by constraint: %s", event.sg_event_id)
                return self._duplicate(event)

        logger.info(
            "Message event recorded: type=%s id=%s",
            mapping.internal_type, str(message_event.id)[:8],
            extra={"tenant_id": str(tenant_id), "event_id": event.sg_event_id},
        )
        return ProcessedEventResult(
            success=True,
            event_id=event.sg_event_id,
            event_type=event.event,
            message_event_id=str(message_event.id),
        )

    @staticmethod
    def _duplicate(event: ProviderEventBase) -> ProcessedEventResult:
        return ProcessedEventResult(
            success=True, event_id=event.sg_event_id, event_type=event.event,
            skipped=True, reason=REASON_DUPLICATE,
        )
