"""
Seed a demo contact campaign (draft) and queue its start task.
The task processor activates it at the start node and queues the first send.

Usage:
    python scripts/seed_campaign.py --tenant <uuid>
    python scripts/seed_campaign.py --tenant <uuid> --timezone Europe/Berlin
"""
import argparse
import asyncio
import logging
import uuid

from dripline.database import async_session_factory, dispose_engine
from dripline.models.contact_campaign import ContactCampaign
from dripline.schemas.campaign_plan import CampaignPlan
from dripline.services.task_dispatch import enqueue_task, START_CAMPAIGN_TASK
from dripline.utils.dedup import close_redis

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def demo_plan(timezone_name: str) -> dict:
    return {
        "version": "1.0",
        "timezone": timezone_name,
        "quietHours": {"start": "21:00", "end": "08:00"},
        "startNodeId": "intro",
        "nodes": [
            {
                "id": "intro",
                "action": "send",
                "subject": "Quick question",
                "body": "Hi {{first_name}}, do you have a minute this week?",
                "transitions": [
                    {"on": "opened", "to": "follow_up", "within": "P3D"},
                    {"on": "no_open", "to": "bump", "after": "PT72H"},
                    {"on": "bounced", "to": "stop", "within": "P1D"},
                    {"on": "unsubscribed", "to": "stop", "within": "P30D"},
                ],
            },
            {
                "id": "bump",
                "action": "send",
                "subject": "Re: Quick question",
                "body": "Bumping this to the top of your inbox.",
                "schedule": {"delay": "PT2H"},
                "transitions": [
                    {"on": "opened", "to": "follow_up", "within": "P3D"},
                    {"on": "no_open", "to": "stop", "after": "P5D"},
                ],
            },
            {
                "id": "follow_up",
                "action": "send",
                "subject": "Next steps",
                "body": "Glad this caught your eye. Here is a link to book a call.",
                "schedule": {"delay": "PT1H"},
                "transitions": [
                    {"on": "clicked", "to": "done", "within": "P7D"},
                    {"on": "no_click", "to": "stop", "after": "P7D"},
                ],
            },
            {"id": "done", "action": "stop"},
        ],
    }


async def seed(tenant_id: uuid.UUID, timezone_name: str):
    plan = demo_plan(timezone_name)
    CampaignPlan.model_validate(plan)

    async with async_session_factory() as db:
        campaign = ContactCampaign(
            tenant_id=tenant_id,
            contact_id=uuid.uuid4(),
            plan_json=plan,
        )
        db.add(campaign)
        await db.commit()
        campaign_id = campaign.id

    task_id = await enqueue_task(
        START_CAMPAIGN_TASK,
        payload={"tenant_id": str(tenant_id), "campaign_id": str(campaign_id)},
        priority=10,
    )
    logger.info("Seeded campaign %s (start task %s)", campaign_id, task_id)

    await close_redis()
    await dispose_engine()


def main():
    parser = argparse.ArgumentParser(description="Seed a demo contact campaign")
    parser.add_argument("--tenant", required=True, type=uuid.UUID, help="Tenant UUID")
    parser.add_argument("--timezone", default="America/Chicago")
    args = parser.parse_args()

    asyncio.run(seed(args.tenant, args.timezone))


if __name__ == "__main__":
    main()
