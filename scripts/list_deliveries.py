"""
List the most recent archived webhook deliveries for a tenant.

Usage:
    python scripts/list_deliveries.py --tenant <uuid>
    python scripts/list_deliveries.py --tenant <uuid> --provider sendgrid --limit 10
"""
import argparse
import asyncio
import logging
import uuid

from dripline.database import async_session_factory, dispose_engine
from dripline.services.delivery_archive import list_recent

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def show(tenant_id: uuid.UUID, provider: str | None, limit: int):
    async with async_session_factory() as db:
        deliveries = await list_recent(db, tenant_id, provider=provider, limit=limit)

    if not deliveries:
        logger.info("No deliveries for tenant %s", tenant_id)
    for delivery in deliveries:
        logger.info(
            "%s  %s  %-8s %-15s events=%d status=%s cid=%s",
            delivery.received_at.isoformat(),
            str(delivery.id)[:8],
            delivery.provider,
            delivery.event_type,
            delivery.total_events,
            delivery.status,
            delivery.correlation_id or "-",
        )
    await dispose_engine()


def main():
    parser = argparse.ArgumentParser(description="List recent webhook deliveries")
    parser.add_argument("--tenant", required=True, type=uuid.UUID, help="Tenant UUID")
    parser.add_argument("--provider", default=None)
    parser.add_argument("--limit", type=int, default=50)
    args = parser.parse_args()

    asyncio.run(show(args.tenant, args.provider, args.limit))


if __name__ == "__main__":
    main()
