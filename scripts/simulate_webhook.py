"""
Simulate a signed SendGrid event webhook against a running instance.

Usage:
    python scripts/simulate_webhook.py --tenant <uuid> --message <outbound-id>
    python scripts/simulate_webhook.py --tenant <uuid> --message <id> --event open
    python scripts/simulate_webhook.py --tenant <uuid> --message <id> --event open --event click
"""
import argparse
import asyncio
import json
import logging
import time
import uuid

import httpx

from dripline.config import get_settings
from dripline.utils.webhook_signatures import (
    SignatureVerifier,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


def build_events(tenant_id: str, message_id: str, event_types: list[str]) -> list[dict]:
    now = int(time.time())
    return [
        {
            "email": "prospect@example.com",
            "timestamp": now,
            "event": event_type,
            "sg_event_id": f"sim_{uuid.uuid4().hex[:16]}",
            "sg_message_id": f"sim.{message_id[:8]}",
            "tenant_id": tenant_id,
            "outbound_message_id": message_id,
        }
        for event_type in event_types
    ]


async def send(base_url: str, tenant_id: str, message_id: str, event_types: list[str]):
    settings = get_settings()
    verifier = SignatureVerifier(settings.webhook_secret)

    body = json.dumps(build_events(tenant_id, message_id, event_types)).encode("utf-8")
    timestamp = str(int(time.time()))
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: verifier.sign(timestamp, body),
        TIMESTAMP_HEADER: timestamp,
    }

    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(
            f"{base_url}/api/v1/webhooks/sendgrid/events", content=body, headers=headers,
        )
        logger.info("Webhook response: %s %s", resp.status_code, resp.text)
        return resp


def main():
    parser = argparse.ArgumentParser(description="Send a signed provider webhook")
    parser.add_argument("--tenant", required=True, help="Tenant UUID")
    parser.add_argument("--message", required=True, help="Outbound message id")
    parser.add_argument(
        "--event", action="append", dest="events",
        help="Provider event type, repeatable (default: delivered)",
    )
    parser.add_argument("--url", default=BASE_URL)
    args = parser.parse_args()

    asyncio.run(send(args.url, args.tenant, args.message, args.events or ["delivered"]))


if __name__ == "__main__":
    main()
