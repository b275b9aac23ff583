"""
Tests for dripline/services/delivery_archive.py - raw webhook delivery archive.
"""
import uuid
import pytest
from sqlalchemy import select

from dripline.models.webhook_delivery import WebhookDelivery
from dripline.schemas.api_responses import ProcessedEventResult
from dripline.services import delivery_archive
from dripline.services.event_normalizer import validate_event
from dripline.utils.logging import set_correlation_id

from conftest import provider_event


def _result(success=True, skipped=False):
    return ProcessedEventResult(
        success=success, event_id=uuid.uuid4().hex, event_type="delivered", skipped=skipped,
    )


class TestClassifyDelivery:
    def test_single_event_keeps_type_and_message(self, tenant_id):
        event = validate_event(provider_event(tenant_id, "open", message_id="om-9"))
        assert delivery_archive.classify_delivery([event]) == ("open", "om-9")

    def test_batch(self, tenant_id):
        events = [
            validate_event(provider_event(tenant_id, "open", message_id="om-9")),
            validate_event(provider_event(tenant_id, "click", message_id="om-9")),
        ]
        assert delivery_archive.classify_delivery(events) == ("batch", None)


class TestArchive:
    @pytest.mark.asyncio
    async def test_archive_persists_raw_payload(self, db, tenant_id):
        set_correlation_id("cid-archive-1")
        raw = provider_event(tenant_id, "delivered", message_id="om-1")
        event = validate_event(raw)

        delivery = await delivery_archive.archive(db, tenant_id, "sendgrid", "sig", [event])

        stored = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert stored.id == delivery.id
        assert stored.status == "received"
        assert stored.provider == "sendgrid"
        assert stored.event_type == "delivered"
        assert stored.message_id == "om-1"
        assert stored.signature == "sig"
        assert stored.correlation_id == "cid-archive-1"
        assert stored.payload == [raw]
        assert stored.total_events == 1

    @pytest.mark.asyncio
    async def test_complete_processed(self, db, tenant_id):
        event = validate_event(provider_event(tenant_id))
        delivery = await delivery_archive.archive(db, tenant_id, "sendgrid", "sig", [event])

        status = await delivery_archive.complete(db, delivery, [_result(), _result(skipped=True)])

        assert status == "processed"
        assert delivery.status == "processed"

    @pytest.mark.asyncio
    async def test_complete_partial_failure(self, db, tenant_id):
        event = validate_event(provider_event(tenant_id))
        delivery = await delivery_archive.archive(db, tenant_id, "sendgrid", "sig", [event])

        status = await delivery_archive.complete(db, delivery, [_result(), _result(success=False)])

        assert status == "partial_failure"


class TestListRecent:
    @pytest.mark.asyncio
    async def test_scoped_to_tenant_and_provider(self, db, tenant_id):
        other_tenant = uuid.uuid4()
        for owner in (tenant_id, tenant_id, other_tenant):
            event = validate_event(provider_event(owner))
            await delivery_archive.archive(db, owner, "sendgrid", "sig", [event])

        mine = await delivery_archive.list_recent(db, tenant_id)
        assert len(mine) == 2
        assert all(d.tenant_id == tenant_id for d in mine)

        assert await delivery_archive.list_recent(db, tenant_id, provider="mailgun") == []
        assert len(await delivery_archive.list_recent(db, tenant_id, limit=1)) == 1
