"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret-0123456789")

import json
import time
import uuid
import pytest
from contextlib import ExitStack
from unittest.mock import AsyncMock, MagicMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.pool import StaticPool
from dripline.config import Settings
from dripline.database import Base
from dripline.models.contact_campaign import ContactCampaign
from dripline.models.outbound_message import OutboundMessage
from dripline.utils.webhook_signatures import (
    SignatureVerifier,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
)

WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]

# Modules that import get_redis by name
REDIS_PATCH_TARGETS = (
    "dripline.utils.dedup.get_redis",
    "dripline.services.task_dispatch.get_redis",
    "dripline.utils.rate_limiter.get_redis",
    "dripline.workers.task_processor.get_redis",
    "dripline.api.health.get_redis",
)


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# UUID has NUMERIC affinity on SQLite; store the hex text form instead
@compiles(UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(32)"


@pytest.fixture
async def session_factory():
    """Session factory over one shared in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    """In-memory SQLite database for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    redis_mock = AsyncMock()
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.lpush = AsyncMock(return_value=1)
    with ExitStack() as stack:
        for target in REDIS_PATCH_TARGETS:
            stack.enter_context(patch(target, new_callable=AsyncMock, return_value=redis_mock))
        yield redis_mock


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        webhook_secret=WEBHOOK_SECRET,
        webhook_parallel_processing=False,
        task_processor_enabled=False,
        _env_file=None,
    )


@pytest.fixture
def verifier():
    return SignatureVerifier(WEBHOOK_SECRET)


@pytest.fixture
def tenant_id():
    return uuid.UUID("11111111-1111-1111-1111-111111111111")


def signed_request(body, secret: str = WEBHOOK_SECRET, timestamp=None) -> tuple[dict, bytes]:
    """Headers + raw body for a webhook signed the way the provider signs it."""
    raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    ts = str(int(time.time()) if timestamp is None else timestamp)
    signature = SignatureVerifier(secret).sign(ts, raw)
    return {SIGNATURE_HEADER: signature, TIMESTAMP_HEADER: ts}, raw


def provider_event(
    tenant_id,
    event: str = "delivered",
    message_id=None,
    **overrides,
) -> dict:
    data = {
        "email": "prospect@example.com",
        "timestamp": 1760000000,
        "event": event,
        "sg_event_id": f"evt_{uuid.uuid4().hex[:12]}",
        "sg_message_id": "sg.message.1",
        "tenant_id": str(tenant_id),
    }
    if message_id is not None:
        data["outbound_message_id"] = str(message_id)
    data.update(overrides)
    return data


@pytest.fixture
def sample_plan():
    """Three-step plan: intro -> (opened) follow_up -> (clicked) done."""
    return {
        "version": "1.0",
        "timezone": "UTC",
        "startNodeId": "intro",
        "nodes": [
            {
                "id": "intro",
                "action": "send",
                "subject": "Hello",
                "body": "First touch",
                "transitions": [
                    {"on": "opened", "to": "follow_up", "within": "P3D"},
                    {"on": "no_open", "to": "bump", "after": "PT72H"},
                    {"on": "bounced", "to": "stop", "within": "P1D"},
                ],
            },
            {
                "id": "bump",
                "action": "send",
                "subject": "Bump",
                "body": "Second touch",
                "transitions": [
                    {"on": "opened", "to": "follow_up", "within": "P3D"},
                ],
            },
            {
                "id": "follow_up",
                "action": "send",
                "subject": "Next",
                "body": "Follow up",
                "schedule": {"delay": "PT1H"},
                "transitions": [
                    {"on": "clicked", "to": "done", "within": "P7D"},
                ],
            },
            {"id": "done", "action": "stop"},
        ],
    }


@pytest.fixture
def make_campaign(db, tenant_id, sample_plan):
    """Insert a ContactCampaign (and optionally its outbound message)."""

    async def _make(
        status: str = "active",
        current_node_id="intro",
        plan=None,
        with_message: bool = True,
        tenant=None,
    ):
        owner = tenant or tenant_id
        campaign = ContactCampaign(
            tenant_id=owner,
            contact_id=uuid.uuid4(),
            status=status,
            current_node_id=current_node_id,
            plan_json=plan or sample_plan,
        )
        db.add(campaign)
        await db.flush()

        message = None
        if with_message:
            message = OutboundMessage(
                tenant_id=owner,
                campaign_id=campaign.id,
                contact_id=campaign.contact_id,
                node_id=current_node_id,
                dedupe_key=f"{campaign.id}:{current_node_id}:seed",
                state="sent",
            )
            db.add(message)
        await db.commit()
        return campaign, message

    return _make


@pytest.fixture
def mock_publisher():
    """Publisher double for the plan engine; returns a fresh task id per call."""
    publisher = MagicMock()
    publisher.publish = AsyncMock(side_effect=lambda *a, **kw: str(uuid.uuid4()))
    return publisher
