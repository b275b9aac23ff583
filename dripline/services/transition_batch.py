"""
Batch transition orchestrator - turns the recorded events of one webhook
delivery into campaign transitions.

Lookups are done in three bulk queries (events, outbound messages, campaigns)
instead of one chain per event. Transitions are then applied one event at a
time in payload order, each in its own transaction, so a failure on one event
never affects the others.
"""
import logging
import uuid
from typing import Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dripline.models.contact_campaign import ContactCampaign, CAMPAIGN_ACTIVE, CAMPAIGN_COMPLETED
from dripline.models.message_event import MessageEvent
from dripline.models.outbound_message import OutboundMessage
from dripline.schemas.api_responses import ProcessedEventResult
from dripline.schemas.campaign_plan import CampaignPlan
from dripline.services.plan_execution import (
    PlanExecutionEngine,
    TransitionRequest,
    OUTCOME_COMPLETED,
    OUTCOME_STALE,
)

logger = logging.getLogger(__name__)


class BatchTransitionSummary(BaseModel):
    candidates: int = 0
    transitioned: int = 0
    no_transition: int = 0
    stale: int = 0
    skipped: int = 0
    failed: int = 0


def _as_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class TransitionBatchOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: PlanExecutionEngine,
    ):
        self.session_factory = session_factory
        self.engine = engine

    async def _load(
        self, tenant_id: uuid.UUID, event_ids: list[uuid.UUID],
    ) -> tuple[list[MessageEvent], dict[uuid.UUID, OutboundMessage], dict[uuid.UUID, ContactCampaign]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(MessageEvent).where(
                    MessageEvent.tenant_id == tenant_id,
                    MessageEvent.id.in_(event_ids),
                )
            )
            by_id = {event.id: event for event in result.scalars().all()}
            # Keep payload order
            events = [by_id[event_id] for event_id in event_ids if event_id in by_id]

            message_ids = {
                message_uuid
                for message_uuid in (_as_uuid(event.message_id) for event in events)
                if message_uuid is not None
            }
            messages: dict[uuid.UUID, OutboundMessage] = {}
            if message_ids:
                result = await db.execute(
                    select(OutboundMessage).where(
                        OutboundMessage.tenant_id == tenant_id,
                        OutboundMessage.id.in_(message_ids),
                    )
                )
                messages = {message.id: message for message in result.scalars().all()}

            campaign_ids = {message.campaign_id for message in messages.values()}
            campaigns: dict[uuid.UUID, ContactCampaign] = {}
            if campaign_ids:
                result = await db.execute(
                    select(ContactCampaign).where(
                        ContactCampaign.tenant_id == tenant_id,
                        ContactCampaign.id.in_(campaign_ids),
                    )
                )
                campaigns = {campaign.id: campaign for campaign in result.scalars().all()}

        return events, messages, campaigns

    async def process_batch(
        self, tenant_id: uuid.UUID, results: list[ProcessedEventResult],
    ) -> BatchTransitionSummary:
        summary = BatchTransitionSummary()
        event_ids = [
            event_uuid
            for event_uuid in (
                _as_uuid(r.message_event_id) for r in results if r.success and not r.skipped
            )
            if event_uuid is not None
        ]
        if not event_ids:
            return summary

        events, messages, campaigns = await self._load(tenant_id, event_ids)
        summary.candidates = len(events)

        # Position as seen by this batch, advanced after each applied move
        positions: dict[uuid.UUID, tuple[str, Optional[str]]] = {
            campaign.id: (campaign.status, campaign.current_node_id)
            for campaign in campaigns.values()
        }
        plans: dict[uuid.UUID, CampaignPlan] = {}

        for event in events:
            message = messages.get(_as_uuid(event.message_id))
            campaign = campaigns.get(message.campaign_id) if message else None
            if campaign is None:
                summary.skipped += 1
                continue

            status, node_id = positions[campaign.id]
            if status != CAMPAIGN_ACTIVE or not node_id:
                summary.skipped += 1
                continue

            try:
                plan = plans.get(campaign.id)
                if plan is None:
                    plan = plans[campaign.id] = self.engine.load_plan(campaign)

                async with self.session_factory() as db:
                    outcome = await self.engine.process_transition(db, TransitionRequest(
                        tenant_id=tenant_id,
                        campaign_id=campaign.id,
                        event_type=event.type,
                        current_node_id=node_id,
                        plan=plan,
                        event_ref=str(event.id),
                    ))
                    await db.commit()
            except ValidationError as e:
                summary.failed += 1
                logger.error(
                    "Invalid plan on campaign: %d error(s)", e.error_count(),
                    extra={"tenant_id": str(tenant_id), "campaign_id": str(campaign.id)},
                )
                continue
            except Exception as e:
                summary.failed += 1
                logger.error(
                    "Transition failed for event %s: %s", str(event.id)[:8], str(e),
                    exc_info=True,
                    extra={"tenant_id": str(tenant_id), "campaign_id": str(campaign.id)},
                )
                continue

            if outcome.moved:
                summary.transitioned += 1
                positions[campaign.id] = (
                    CAMPAIGN_COMPLETED if outcome.status == OUTCOME_COMPLETED else CAMPAIGN_ACTIVE,
                    outcome.to_node_id,
                )
            elif outcome.status == OUTCOME_STALE:
                summary.stale += 1
            else:
                summary.no_transition += 1

        logger.info(
            "Batch transitions: candidates=%d transitioned=%d skipped=%d stale=%d failed=%d",
            summary.candidates, summary.transitioned, summary.skipped,
            summary.stale, summary.failed,
            extra={"tenant_id": str(tenant_id)},
        )
        return summary
