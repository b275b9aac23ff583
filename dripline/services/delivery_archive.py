"""
Delivery archive - stores every verified webhook delivery before any event
is recorded, then marks it processed or partial_failure once recording ends.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.models.webhook_delivery import (
    WebhookDelivery,
    DELIVERY_PARTIAL_FAILURE,
    DELIVERY_PROCESSED,
    DELIVERY_RECEIVED,
)
from dripline.schemas.api_responses import ProcessedEventResult
from dripline.schemas.provider_events import ProviderEventBase
from dripline.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

BATCH_EVENT_TYPE = "batch"


def classify_delivery(events: list[ProviderEventBase]) -> tuple[str, Optional[str]]:
    """(event_type, message_id) for the archive row. Only single events carry a message id."""
    if len(events) == 1:
        return events[0].event, events[0].outbound_message_id
    return BATCH_EVENT_TYPE, None


async def archive(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    provider: str,
    signature: str,
    events: list[ProviderEventBase],
) -> WebhookDelivery:
    """Insert the raw delivery with status `received` and commit it."""
    event_type, message_id = classify_delivery(events)
    delivery = WebhookDelivery(
        tenant_id=tenant_id,
        provider=provider,
        event_type=event_type,
        message_id=message_id,
        payload=[event.raw for event in events],
        signature=signature,
        status=DELIVERY_RECEIVED,
        correlation_id=get_correlation_id(),
    )
    db.add(delivery)
    await db.commit()

    logger.info(
        "Webhook delivery archived: id=%s type=%s events=%d",
        str(delivery.id)[:8], event_type, len(events),
        extra={"tenant_id": str(tenant_id), "provider": provider, "delivery_id": str(delivery.id)},
    )
    return delivery


async def complete(
    db: AsyncSession,
    delivery: WebhookDelivery,
    results: list[ProcessedEventResult],
) -> str:
    """Set the terminal status from the per-event results and commit."""
    status = (
        DELIVERY_PARTIAL_FAILURE
        if any(not r.success for r in results)
        else DELIVERY_PROCESSED
    )
    delivery.status = status
    await db.commit()
    return status


async def list_recent(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    provider: Optional[str] = None,
    limit: int = 50,
) -> list[WebhookDelivery]:
    query = select(WebhookDelivery).where(WebhookDelivery.tenant_id == tenant_id)
    if provider:
        query = query.where(WebhookDelivery.provider == provider)
    result = await db.execute(
        query.order_by(WebhookDelivery.received_at.desc()).limit(limit)
    )
    return list(result.scalars().all())
