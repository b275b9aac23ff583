"""
Task processor worker - polls the task_queue table and dispatches campaign jobs.
Handles retries with exponential backoff.

Uses BRPOP on a Redis notification key for near-instant wake on new tasks,
with a 30-second timeout falling back to DB poll as safety net.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dripline.models.contact_campaign import ContactCampaign
from dripline.models.outbound_message import OutboundMessage
from dripline.models.task_queue import (
    TaskQueue,
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_PENDING,
    TASK_PROCESSING,
)
from dripline.services.plan_execution import PlanExecutionEngine
from dripline.services.task_dispatch import (
    TASK_NOTIFY_KEY,
    SEND_STEP_TASK,
    START_CAMPAIGN_TASK,
    TIMEOUT_TASK,
)
from dripline.utils.dedup import get_redis

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30  # Fallback DB poll interval
MAX_TASKS_PER_CYCLE = 10
BRPOP_TIMEOUT = 30  # seconds to wait for Redis notification
HEARTBEAT_KEY = "dripline:worker_health:task_processor"

TaskHandler = Callable[[AsyncSession, TaskQueue], Awaitable[dict]]


def retry_backoff_seconds(base_seconds: int, retry_count: int) -> int:
    """Exponential backoff: base, base*4, base*16, ..."""
    return base_seconds * (4 ** (retry_count - 1))


def _payload_uuid(payload: dict, key: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(payload.get(key)))
    except ValueError:
        return None


class TaskProcessor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: PlanExecutionEngine,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.handlers: dict[str, TaskHandler] = {
            SEND_STEP_TASK: self._handle_send_step,
            TIMEOUT_TASK: self._handle_timeout,
            START_CAMPAIGN_TASK: self._handle_start_campaign,
        }

    async def _heartbeat(self) -> None:
        """Store heartbeat timestamp in Redis."""
        try:
            redis = await get_redis()
            await redis.set(HEARTBEAT_KEY, datetime.now(timezone.utc).isoformat(), ex=120)
        except Exception as e:
            logger.debug("Heartbeat write failed: %s", str(e))

    async def run(self) -> None:
        """Main loop - wait for notification or poll every 30s."""
        logger.info("Task processor started (adaptive polling, BRPOP %ds timeout)", BRPOP_TIMEOUT)

        while True:
            try:
                await self.process_cycle()
            except Exception as e:
                logger.error("Task processor cycle error: %s", str(e))

            await self._heartbeat()

            # Wait for either a Redis notification or timeout
            try:
                redis = await get_redis()
                result = await redis.brpop(TASK_NOTIFY_KEY, timeout=BRPOP_TIMEOUT)
                if result:
                    # Drain any additional notifications to avoid stacking
                    while await redis.rpop(TASK_NOTIFY_KEY):
                        pass
            except Exception as e:
                # If Redis is unavailable, fall back to sleep
                logger.debug("Redis BRPOP unavailable, falling back to sleep: %s", str(e))
                await asyncio.sleep(POLL_INTERVAL_SECONDS)

    async def process_cycle(self) -> int:
        """Find and execute pending tasks that are due. Returns the number executed."""
        now = datetime.now(timezone.utc)

        async with self.session_factory() as db:
            # Fetch pending tasks that are due, ordered by priority (high first)
            result = await db.execute(
                select(TaskQueue.id)
                .where(
                    and_(
                        TaskQueue.status == TASK_PENDING,
                        TaskQueue.scheduled_at <= now,
                    )
                )
                .order_by(TaskQueue.priority.desc(), TaskQueue.scheduled_at, TaskQueue.created_at)
                .limit(MAX_TASKS_PER_CYCLE)
            )
            task_ids = list(result.scalars().all())

        if not task_ids:
            return 0

        logger.info("Processing %d pending tasks", len(task_ids))
        for task_id in task_ids:
            await self._execute_task(task_id)
        return len(task_ids)

    async def _execute_task(self, task_id: uuid.UUID) -> None:
        """Execute a single task in its own transaction and record success/failure."""
        async with self.session_factory() as db:
            task = await db.get(TaskQueue, task_id)
            if task is None or task.status != TASK_PENDING:
                return
            task.status = TASK_PROCESSING
            task.started_at = datetime.now(timezone.utc)
            await db.flush()

            try:
                result = await self._dispatch_task(db, task)
                task.status = TASK_COMPLETED
                task.completed_at = datetime.now(timezone.utc)
                task.result_data = result
                await db.commit()
                logger.info("Task completed: id=%s type=%s", str(task.id)[:8], task.task_type)
                return
            except Exception as e:
                error_msg = str(e) or type(e).__name__
                await db.rollback()

        await self._record_failure(task_id, error_msg)

    async def _record_failure(self, task_id: uuid.UUID, error_msg: str) -> None:
        async with self.session_factory() as db:
            task = await db.get(TaskQueue, task_id)
            if task is None:
                return
            task.retry_count = (task.retry_count or 0) + 1
            task.error_message = error_msg

            if task.retries_exhausted:
                task.status = TASK_FAILED
                task.completed_at = datetime.now(timezone.utc)
                logger.error(
                    "Task failed (max retries): id=%s type=%s error=%s",
                    str(task.id)[:8], task.task_type, error_msg,
                )
            else:
                backoff = retry_backoff_seconds(task.backoff_seconds or 30, task.retry_count)
                task.status = TASK_PENDING
                task.scheduled_at = datetime.now(timezone.utc) + timedelta(seconds=backoff)
                logger.warning(
                    "Task retry %d/%d: id=%s type=%s backoff=%ds",
                    task.retry_count, task.max_retries,
                    str(task.id)[:8], task.task_type, backoff,
                )
            await db.commit()

    async def _dispatch_task(self, db: AsyncSession, task: TaskQueue) -> dict:
        """
        Route task to its handler function.
        Each handler receives the session and task and returns a result dict.
        """
        handler = self.handlers.get(task.task_type)
        if not handler:
            logger.warning("Unknown task type: %s", task.task_type)
            return {"status": "skipped", "reason": f"unknown task type: {task.task_type}"}
        return await handler(db, task)

    async def _handle_send_step(self, db: AsyncSession, task: TaskQueue) -> dict:
        """Hand a send node to the external sender by queuing an OutboundMessage."""
        payload = task.payload or {}
        tenant_id = _payload_uuid(payload, "tenant_id")
        campaign_id = _payload_uuid(payload, "campaign_id")
        node_id = payload.get("node_id")
        if not tenant_id or not campaign_id or not node_id:
            return {"status": "skipped", "reason": "incomplete payload"}

        campaign = await db.get(ContactCampaign, campaign_id)
        if not campaign or campaign.tenant_id != tenant_id:
            return {"status": "skipped", "reason": "campaign not found"}
        if not self.engine.should_transition(campaign) or campaign.current_node_id != node_id:
            return {"status": "skipped", "reason": "campaign left node"}

        dedupe_key = f"{campaign_id}:{node_id}:{task.id}"
        message = OutboundMessage(
            tenant_id=tenant_id,
            campaign_id=campaign_id,
            contact_id=campaign.contact_id,
            channel=payload.get("channel") or campaign.channel,
            node_id=node_id,
            dedupe_key=dedupe_key,
            content={
                "subject": payload.get("subject"),
                "body": payload.get("body"),
                "channel": payload.get("channel"),
            },
            state="queued",
            scheduled_at=datetime.now(timezone.utc),
        )
        db.add(message)
        await db.flush()

        logger.info(
            "Outbound message queued: node=%s id=%s", node_id, str(message.id)[:8],
            extra={"tenant_id": str(tenant_id), "campaign_id": str(campaign_id)},
        )
        return {"status": "queued", "outbound_message_id": str(message.id)}

    async def _handle_timeout(self, db: AsyncSession, task: TaskQueue) -> dict:
        """Fire a synthetic no_* event for the node the timeout was scheduled on."""
        payload = task.payload or {}
        tenant_id = _payload_uuid(payload, "tenant_id")
        campaign_id = _payload_uuid(payload, "campaign_id")
        if not tenant_id or not campaign_id or not payload.get("node_id"):
            return {"status": "skipped", "reason": "incomplete payload"}

        outcome = await self.engine.process_timeout(
            db,
            tenant_id=tenant_id,
            campaign_id=campaign_id,
            node_id=payload["node_id"],
            event_type=payload.get("event_type", ""),
            task_ref=str(task.id),
        )
        return outcome.model_dump()

    async def _handle_start_campaign(self, db: AsyncSession, task: TaskQueue) -> dict:
        """Activate a draft campaign at its start node."""
        payload = task.payload or {}
        tenant_id = _payload_uuid(payload, "tenant_id")
        campaign_id = _payload_uuid(payload, "campaign_id")
        if not tenant_id or not campaign_id:
            return {"status": "skipped", "reason": "incomplete payload"}

        campaign = await db.get(ContactCampaign, campaign_id)
        if not campaign or campaign.tenant_id != tenant_id:
            return {"status": "skipped", "reason": "campaign not found"}

        outcome = await self.engine.initialize(db, campaign)
        return outcome.model_dump()
