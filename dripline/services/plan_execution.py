"""
Campaign plan execution engine - walks a contact campaign through its plan
graph in response to message events and timeouts.

A move is applied with a conditional update on the campaign's expected
current node, so two concurrent events for the same campaign cannot both
move it: the loser sees zero affected rows and schedules nothing.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.models.campaign_transition import CampaignTransition
from dripline.models.contact_campaign import (
    ContactCampaign,
    CAMPAIGN_ACTIVE,
    CAMPAIGN_COMPLETED,
)
from dripline.models.message_event import MessageEvent
from dripline.models.outbound_message import OutboundMessage
from dripline.models.task_queue import TaskQueue, TASK_CANCELED, TASK_PENDING
from dripline.schemas.campaign_plan import (
    CampaignPlan,
    SendNode,
    StopNode,
    WaitNode,
    STOP_TARGET,
    SYNTHETIC_COUNTERPARTS,
)
from dripline.services.task_dispatch import SEND_STEP_TASK, TIMEOUT_TASK
from dripline.utils.schedule import calculate_schedule_time

logger = logging.getLogger(__name__)

OUTCOME_TRANSITIONED = "transitioned"
OUTCOME_COMPLETED = "completed"
OUTCOME_NO_TRANSITION = "no_transition"
OUTCOME_STALE = "stale"
OUTCOME_IGNORED = "ignored"

START_EVENT = "start"

PlanNodeType = Union[SendNode, WaitNode, StopNode]


class TransitionRequest(BaseModel):
    tenant_id: uuid.UUID
    campaign_id: uuid.UUID
    event_type: str
    current_node_id: str
    plan: CampaignPlan
    event_ref: Optional[str] = None


class TransitionOutcome(BaseModel):
    status: str
    from_node_id: Optional[str] = None
    to_node_id: Optional[str] = None
    scheduled_task_ids: list[str] = Field(default_factory=list)
    reason: Optional[str] = None

    @property
    def moved(self) -> bool:
        return self.status in (OUTCOME_TRANSITIONED, OUTCOME_COMPLETED)


def campaign_task_prefix(campaign_id: uuid.UUID) -> str:
    return f"campaign:{campaign_id}:"


class PlanExecutionEngine:
    def __init__(self, publisher):
        self.publisher = publisher

    @staticmethod
    def should_transition(campaign: ContactCampaign) -> bool:
        """Only active campaigns positioned on a node react to events."""
        return campaign.status == CAMPAIGN_ACTIVE and bool(campaign.current_node_id)

    @staticmethod
    def load_plan(campaign: ContactCampaign) -> CampaignPlan:
        return CampaignPlan.model_validate(campaign.plan_json)

    async def process_transition(
        self, db: AsyncSession, request: TransitionRequest,
    ) -> TransitionOutcome:
        """
        Apply the first transition of the current node matching the event.
        Flushes but does not commit; the caller owns the transaction.
        """
        log_extra = {"tenant_id": str(request.tenant_id), "campaign_id": str(request.campaign_id)}
        plan = request.plan

        current = plan.get_node(request.current_node_id)
        if current is None:
            logger.warning(
                "Current node %s not found in plan", request.current_node_id, extra=log_extra,
            )
            return TransitionOutcome(
                status=OUTCOME_IGNORED, from_node_id=request.current_node_id,
                reason="current node not in plan",
            )

        transition = current.find_transition(request.event_type)
        if transition is None:
            logger.debug(
                "No transition from %s on %s", current.id, request.event_type, extra=log_extra,
            )
            return TransitionOutcome(status=OUTCOME_NO_TRANSITION, from_node_id=current.id)

        target = plan.get_node(transition.to)
        if target is None and transition.to != STOP_TARGET:
            logger.error("Target node %s not found in plan", transition.to, extra=log_extra)
            return TransitionOutcome(
                status=OUTCOME_IGNORED, from_node_id=current.id, reason="target node not in plan",
            )

        terminal = target is None or target.action == "stop"
        to_node_id = target.id if target is not None else STOP_TARGET
        now = datetime.now(timezone.utc)

        values: dict = {"current_node_id": to_node_id, "updated_at": now}
        if terminal:
            values.update(status=CAMPAIGN_COMPLETED, completed_at=now)

        result = await db.execute(
            update(ContactCampaign)
            .where(
                and_(
                    ContactCampaign.id == request.campaign_id,
                    ContactCampaign.tenant_id == request.tenant_id,
                    ContactCampaign.status == CAMPAIGN_ACTIVE,
                    ContactCampaign.current_node_id == current.id,
                )
            )
            .values(**values)
        )
        if result.rowcount == 0:
            logger.info(
                "Stale transition %s -> %s on %s: campaign moved concurrently",
                current.id, to_node_id, request.event_type, extra=log_extra,
            )
            return TransitionOutcome(
                status=OUTCOME_STALE, from_node_id=current.id, to_node_id=to_node_id,
            )

        db.add(CampaignTransition(
            tenant_id=request.tenant_id,
            campaign_id=request.campaign_id,
            from_node_id=current.id,
            to_node_id=to_node_id,
            event_type=request.event_type,
            event_ref=request.event_ref,
            to_status=CAMPAIGN_COMPLETED if terminal else CAMPAIGN_ACTIVE,
            occurred_at=now,
        ))

        scheduled: list[str] = []
        if terminal:
            await self.cancel_pending_tasks(db, request.campaign_id)
        else:
            scheduled = await self._schedule_node(
                db, request.tenant_id, request.campaign_id, target, plan, now,
            )
        await db.flush()

        logger.info(
            "Campaign transition %s -> %s on %s",
            current.id, to_node_id, request.event_type, extra=log_extra,
        )
        return TransitionOutcome(
            status=OUTCOME_COMPLETED if terminal else OUTCOME_TRANSITIONED,
            from_node_id=current.id,
            to_node_id=to_node_id,
            scheduled_task_ids=scheduled,
        )

    async def initialize(self, db: AsyncSession, campaign: ContactCampaign) -> TransitionOutcome:
        """Activate a draft campaign at its plan's start node and schedule its first step."""
        log_extra = {"tenant_id": str(campaign.tenant_id), "campaign_id": str(campaign.id)}
        if campaign.status != "draft":
            logger.info("Campaign already %s, not initializing", campaign.status, extra=log_extra)
            return TransitionOutcome(status=OUTCOME_IGNORED, reason=f"status {campaign.status}")

        plan = self.load_plan(campaign)
        start = plan.get_node(plan.start_node_id)
        if start.action == "stop":
            logger.warning("Campaign start node %s is not actionable", start.id, extra=log_extra)
            return TransitionOutcome(status=OUTCOME_IGNORED, reason="start node is a stop node")

        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(ContactCampaign)
            .where(
                and_(
                    ContactCampaign.id == campaign.id,
                    ContactCampaign.tenant_id == campaign.tenant_id,
                    ContactCampaign.status == "draft",
                )
            )
            .values(
                status=CAMPAIGN_ACTIVE,
                current_node_id=start.id,
                plan_version=plan.version,
                started_at=now,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            return TransitionOutcome(status=OUTCOME_STALE, to_node_id=start.id)

        db.add(CampaignTransition(
            tenant_id=campaign.tenant_id,
            campaign_id=campaign.id,
            from_node_id=None,
            to_node_id=start.id,
            event_type=START_EVENT,
            to_status=CAMPAIGN_ACTIVE,
            occurred_at=now,
        ))
        scheduled = await self._schedule_node(
            db, campaign.tenant_id, campaign.id, start, plan, now,
        )
        await db.flush()

        logger.info("Campaign execution initialized at %s", start.id, extra=log_extra)
        return TransitionOutcome(
            status=OUTCOME_TRANSITIONED, to_node_id=start.id, scheduled_task_ids=scheduled,
        )

    async def process_timeout(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        campaign_id: uuid.UUID,
        node_id: str,
        event_type: str,
        task_ref: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Fire a synthetic no_* event, unless the campaign has left the node or
        the real counterpart event was recorded in the meantime.
        """
        log_extra = {"tenant_id": str(tenant_id), "campaign_id": str(campaign_id)}
        campaign = await db.get(ContactCampaign, campaign_id)
        if campaign is None or campaign.tenant_id != tenant_id:
            logger.info("Timeout for unknown campaign ignored", extra=log_extra)
            return TransitionOutcome(status=OUTCOME_IGNORED, reason="campaign not found")

        if not self.should_transition(campaign) or campaign.current_node_id != node_id:
            logger.debug(
                "Timeout %s for node %s ignored: campaign at %s (%s)",
                event_type, node_id, campaign.current_node_id, campaign.status, extra=log_extra,
            )
            return TransitionOutcome(
                status=OUTCOME_IGNORED, from_node_id=campaign.current_node_id,
                reason="campaign left node",
            )

        counterpart = SYNTHETIC_COUNTERPARTS.get(event_type)
        if counterpart and await self._counterpart_recorded(db, tenant_id, campaign_id, counterpart):
            logger.info(
                "Timeout %s ignored: %s already recorded", event_type, counterpart, extra=log_extra,
            )
            return TransitionOutcome(
                status=OUTCOME_IGNORED, from_node_id=node_id, reason=f"{counterpart} recorded",
            )

        return await self.process_transition(db, TransitionRequest(
            tenant_id=tenant_id,
            campaign_id=campaign_id,
            event_type=event_type,
            current_node_id=node_id,
            plan=self.load_plan(campaign),
            event_ref=task_ref,
        ))

    async def cancel_pending_tasks(self, db: AsyncSession, campaign_id: uuid.UUID) -> int:
        """Cancel queued steps and timeouts of a campaign that reached a terminal state."""
        result = await db.execute(
            update(TaskQueue)
            .where(
                and_(
                    TaskQueue.status == TASK_PENDING,
                    TaskQueue.dedup_key.like(f"{campaign_task_prefix(campaign_id)}%"),
                )
            )
            .values(status=TASK_CANCELED, completed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(
                "Canceled %d pending tasks", result.rowcount,
                extra={"campaign_id": str(campaign_id)},
            )
        return result.rowcount

    async def _counterpart_recorded(
        self, db: AsyncSession, tenant_id: uuid.UUID, campaign_id: uuid.UUID, event_type: str,
    ) -> bool:
        latest = await db.execute(
            select(OutboundMessage.id)
            .where(
                OutboundMessage.tenant_id == tenant_id,
                OutboundMessage.campaign_id == campaign_id,
            )
            .order_by(OutboundMessage.created_at.desc())
            .limit(1)
        )
        message_id = latest.scalar_one_or_none()
        if message_id is None:
            return False

        found = await db.execute(
            select(MessageEvent.id)
            .where(
                MessageEvent.tenant_id == tenant_id,
                MessageEvent.message_id == str(message_id),
                MessageEvent.type == event_type,
            )
            .limit(1)
        )
        return found.scalar_one_or_none() is not None

    async def _schedule_node(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        campaign_id: uuid.UUID,
        node: PlanNodeType,
        plan: CampaignPlan,
        base_time: datetime,
    ) -> list[str]:
        """Publish the send step (send nodes) and synthetic timeouts (send/wait nodes)."""
        task_ids: list[str] = []
        quiet_hours = plan.quiet_hours_dict()
        prefix = campaign_task_prefix(campaign_id)

        if isinstance(node, SendNode):
            if node.schedule.at is not None:
                send_at = node.schedule.at
                if send_at.tzinfo is None:
                    send_at = send_at.replace(tzinfo=timezone.utc)
            else:
                send_at = calculate_schedule_time(
                    node.schedule.delay, plan.timezone, quiet_hours, base_time,
                )
            task_id = await self.publisher.publish(
                db,
                SEND_STEP_TASK,
                {
                    "tenant_id": str(tenant_id),
                    "campaign_id": str(campaign_id),
                    "node_id": node.id,
                    "subject": node.subject,
                    "body": node.body,
                    "channel": node.channel,
                    "scheduled_at": send_at.isoformat(),
                },
                delay_seconds=int((send_at - base_time).total_seconds()),
                dedup_key=f"{prefix}send:{node.id}",
            )
            if task_id:
                task_ids.append(task_id)

        if isinstance(node, (SendNode, WaitNode)):
            for transition in node.transitions:
                if not transition.is_synthetic:
                    continue
                fire_at = calculate_schedule_time(
                    plan.timeout_window(transition), plan.timezone, quiet_hours, base_time,
                )
                task_id = await self.publisher.publish(
                    db,
                    TIMEOUT_TASK,
                    {
                        "tenant_id": str(tenant_id),
                        "campaign_id": str(campaign_id),
                        "node_id": node.id,
                        "event_type": transition.on,
                        "target_node_id": transition.to,
                    },
                    delay_seconds=int((fire_at - base_time).total_seconds()),
                    dedup_key=f"{prefix}timeout:{node.id}:{transition.on}",
                )
                if task_id:
                    task_ids.append(task_id)

        return task_ids
