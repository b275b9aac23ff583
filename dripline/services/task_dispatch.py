"""
Task dispatch service - enqueue campaign jobs for background processing.
Central helper for creating tasks in the task queue.

Publishing can be deduplicated over a time window. Inside a caller's
transaction the check is a task_queue lookup in that same transaction, so a
rolled-back publish leaves nothing behind. Standalone publishes claim a Redis
SET NX EX key and release it if the commit fails.

Immediate tasks push a notification to Redis so the task processor wakes via
BRPOP instead of waiting for its next poll.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.database import async_session_factory
from dripline.models.task_queue import TaskQueue, TASK_CANCELED
from dripline.utils.dedup import claim_dedup_key, get_redis, release_dedup_key

logger = logging.getLogger(__name__)

TASK_NOTIFY_KEY = "dripline:task_notify"
TASK_DEDUP_PREFIX = "dripline:task_dedup:"

SEND_STEP_TASK = "campaign.send_step"
TIMEOUT_TASK = "campaign.timeout"
START_CAMPAIGN_TASK = "campaign.start"


async def _published_within(db: AsyncSession, dedup_key: str, window_seconds: int) -> bool:
    """True if a live task with this key was created inside the window, as seen by db."""
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=window_seconds)
    result = await db.execute(
        select(TaskQueue.id)
        .where(
            and_(
                TaskQueue.dedup_key == dedup_key,
                TaskQueue.status != TASK_CANCELED,
                TaskQueue.created_at >= cutoff,
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def enqueue_task(
    task_type: str,
    payload: Optional[dict] = None,
    priority: int = 5,
    delay_seconds: int = 0,
    max_retries: int = 3,
    backoff_seconds: int = 30,
    dedup_key: Optional[str] = None,
    dedup_window_seconds: int = 0,
    db: Optional[AsyncSession] = None,
) -> Optional[str]:
    """
    Enqueue a task for background processing.

    Args:
        task_type: Type of task (campaign.send_step, campaign.timeout, campaign.start)
        payload: Task-specific data as JSON-serializable dict
        priority: 0=low, 5=normal, 10=high
        delay_seconds: Delay before task becomes eligible for processing
        max_retries: Maximum attempts before the task is marked failed
        backoff_seconds: Base for exponential retry backoff
        dedup_key: Identical keys published within dedup_window_seconds are dropped
        dedup_window_seconds: Dedup window length; 0 disables dedup
        db: Join the caller's transaction instead of committing a new session

    Returns:
        Task ID as string, or None if the publish was deduplicated
    """
    dedup = bool(dedup_key) and dedup_window_seconds > 0

    scheduled_at = datetime.now(timezone.utc)
    if delay_seconds > 0:
        scheduled_at = scheduled_at + timedelta(seconds=delay_seconds)

    task = TaskQueue(
        task_type=task_type,
        payload=payload or {},
        priority=priority,
        max_retries=max_retries,
        backoff_seconds=backoff_seconds,
        dedup_key=dedup_key,
        scheduled_at=scheduled_at,
    )

    if db is not None:
        if dedup and await _published_within(db, dedup_key, dedup_window_seconds):
            logger.info("Task deduplicated: type=%s key=%s", task_type, dedup_key)
            return None
        db.add(task)
        await db.flush()
        task_id = str(task.id)
    else:
        claim_key = f"{TASK_DEDUP_PREFIX}{dedup_key}"
        if dedup and not await claim_dedup_key(claim_key, dedup_window_seconds):
            logger.info("Task deduplicated: type=%s key=%s", task_type, dedup_key)
            return None
        try:
            async with async_session_factory() as session:
                session.add(task)
                await session.commit()
                task_id = str(task.id)
        except Exception:
            if dedup:
                await release_dedup_key(claim_key)
            raise

    logger.info(
        "Task enqueued: type=%s priority=%d delay=%ds id=%s",
        task_type, priority, delay_seconds, task_id[:8],
    )

    # Notify task processor to wake immediately (non-blocking, best-effort)
    if delay_seconds == 0:
        try:
            redis = await get_redis()
            await redis.lpush(TASK_NOTIFY_KEY, task_id)
        except Exception as e:
            logger.debug("Failed to notify task processor: %s", str(e))

    return task_id


class TaskPublisher:
    """Queue publisher handed to the plan execution engine."""

    def __init__(
        self,
        attempts: int = 3,
        backoff_seconds: int = 2,
        dedup_window_seconds: int = 300,
    ):
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.dedup_window_seconds = dedup_window_seconds

    @classmethod
    def from_settings(cls, settings) -> "TaskPublisher":
        return cls(
            attempts=settings.campaign_send_attempts,
            backoff_seconds=settings.campaign_send_backoff_seconds,
            dedup_window_seconds=settings.campaign_send_dedup_window_seconds,
        )

    async def publish(
        self,
        db: AsyncSession,
        job_name: str,
        payload: dict,
        delay_seconds: int = 0,
        dedup_key: Optional[str] = None,
    ) -> Optional[str]:
        return await enqueue_task(
            task_type=job_name,
            payload=payload,
            delay_seconds=max(0, delay_seconds),
            max_retries=self.attempts,
            backoff_seconds=self.backoff_seconds,
            dedup_key=dedup_key,
            dedup_window_seconds=self.dedup_window_seconds if dedup_key else 0,
            db=db,
        )
