"""
Tests for dripline/services/webhook_gateway.py - the end-to-end webhook pipeline.
"""
import uuid
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.errors import (
    WebhookError,
    MISSING_TENANT_ID,
    PROCESSING_FAILED,
    SIGNATURE_VERIFICATION_FAILED,
)
from dripline.models.message_event import MessageEvent
from dripline.models.webhook_delivery import WebhookDelivery
from dripline.schemas.api_responses import ProcessedEventResult
from dripline.services.event_recorder import EventRecorder
from dripline.services.plan_execution import PlanExecutionEngine
from dripline.services.transition_batch import TransitionBatchOrchestrator
from dripline.services.webhook_gateway import WebhookGateway, parse_tenant_id

from conftest import provider_event, signed_request


@pytest.fixture
def gateway(session_factory, verifier, test_settings, mock_publisher):
    engine = PlanExecutionEngine(mock_publisher)
    return WebhookGateway(
        verifier,
        session_factory,
        EventRecorder(session_factory),
        TransitionBatchOrchestrator(session_factory, engine),
        test_settings,
    )


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestParseTenantId:
    def test_valid(self):
        value = "11111111-1111-1111-1111-111111111111"
        assert parse_tenant_id(value) == uuid.UUID(value)

    @pytest.mark.parametrize("value", [None, "", "tenant-42"])
    def test_invalid(self, value):
        assert parse_tenant_id(value) is None


class TestWebhookGateway:
    @pytest.mark.asyncio
    async def test_happy_path_records_and_transitions(self, db, gateway, tenant_id, make_campaign):
        campaign, message = await make_campaign()
        headers, body = signed_request([
            provider_event(tenant_id, "delivered", message_id=message.id),
            provider_event(tenant_id, "open", message_id=message.id),
        ])

        result = await gateway.process("sendgrid", headers, body)

        assert result.success is True
        assert result.total_events == 2
        assert result.successful_events == 2
        assert result.failed_events == 0
        assert result.skipped_events == 0

        delivery = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert str(delivery.id) == result.webhook_delivery_id
        assert delivery.status == "processed"
        assert delivery.event_type == "batch"
        assert await _count(db, MessageEvent) == 2

        await db.refresh(campaign)
        assert campaign.current_node_id == "follow_up"

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, db, gateway, tenant_id):
        headers, body = signed_request([
            provider_event(tenant_id, "delivered", sg_event_id="evt-1"),
            provider_event(tenant_id, "open", sg_event_id="evt-2"),
        ])

        first = await gateway.process("sendgrid", headers, body)
        second = await gateway.process("sendgrid", headers, body)

        assert first.successful_events == 2
        assert second.successful_events == 0
        assert second.skipped_events == 2
        assert await _count(db, MessageEvent) == 2
        # Every delivery is archived, replays included
        assert await _count(db, WebhookDelivery) == 2

    @pytest.mark.asyncio
    async def test_non_recordable_event_skipped(self, db, gateway, tenant_id):
        headers, body = signed_request([
            provider_event(tenant_id, "deferred"),
            provider_event(tenant_id, "delivered"),
        ])

        result = await gateway.process("sendgrid", headers, body)

        assert result.successful_events == 1
        assert result.skipped_events == 1
        assert await _count(db, MessageEvent) == 1

    @pytest.mark.asyncio
    async def test_bad_signature_rejected_before_any_write(self, db, gateway, tenant_id):
        headers, body = signed_request([provider_event(tenant_id)], secret="someone-elses-secret")

        with pytest.raises(WebhookError) as exc:
            await gateway.process("sendgrid", headers, body)

        assert exc.value.code == SIGNATURE_VERIFICATION_FAILED
        assert exc.value.status_code == 401
        assert await _count(db, WebhookDelivery) == 0

    @pytest.mark.asyncio
    async def test_missing_tenant_rejected_before_archive(self, db, gateway, tenant_id):
        event = provider_event(tenant_id)
        del event["tenant_id"]
        headers, body = signed_request([event])

        with pytest.raises(WebhookError) as exc:
            await gateway.process("sendgrid", headers, body)

        assert exc.value.code == MISSING_TENANT_ID
        assert exc.value.status_code == 400
        assert await _count(db, WebhookDelivery) == 0

    @pytest.mark.asyncio
    async def test_non_uuid_tenant_rejected(self, db, gateway):
        headers, body = signed_request([provider_event("tenant-42")])

        with pytest.raises(WebhookError) as exc:
            await gateway.process("sendgrid", headers, body)

        assert exc.value.code == MISSING_TENANT_ID

    @pytest.mark.asyncio
    async def test_partial_failure_isolated(self, db, gateway, tenant_id):
        headers, body = signed_request([
            provider_event(tenant_id, "delivered", sg_event_id="evt-ok"),
            provider_event(tenant_id, "open", sg_event_id="evt-bad"),
        ])
        real_commit = AsyncSession.commit

        async def _flaky_commit(session):
            # Only the insert of the second event hits a storage error
            if any(
                isinstance(obj, MessageEvent) and obj.provider_event_id == "evt-bad"
                for obj in session.new
            ):
                raise OperationalError("INSERT INTO message_events", {}, Exception("disk I/O error"))
            return await real_commit(session)

        with patch.object(AsyncSession, "commit", _flaky_commit):
            result = await gateway.process("sendgrid", headers, body)

        assert result.successful_events == 1
        assert result.failed_events == 1
        assert result.skipped_events == 0
        assert len(result.errors) == 1
        assert "disk I/O error" in result.errors[0]
        delivery = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert delivery.status == "partial_failure"
        stored = (await db.execute(select(MessageEvent.provider_event_id))).scalars().all()
        assert stored == ["evt-ok"]

    @pytest.mark.asyncio
    async def test_transition_failure_does_not_fail_request(self, gateway, tenant_id):
        gateway.orchestrator = MagicMock()
        gateway.orchestrator.process_batch = AsyncMock(side_effect=RuntimeError("engine down"))
        headers, body = signed_request([provider_event(tenant_id)])

        result = await gateway.process("sendgrid", headers, body)

        assert result.success is True
        assert result.successful_events == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_processing_failed(self, verifier, test_settings, tenant_id):
        broken_factory = MagicMock(side_effect=RuntimeError("db unreachable"))
        gateway = WebhookGateway(verifier, broken_factory, MagicMock(), MagicMock(), test_settings)
        headers, body = signed_request([provider_event(tenant_id)])

        with pytest.raises(WebhookError) as exc:
            await gateway.process("sendgrid", headers, body)

        assert exc.value.code == PROCESSING_FAILED
        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    async def test_parallel_recording_collects_every_outcome(self, session_factory, verifier, test_settings, tenant_id):
        settings = test_settings.model_copy(update={
            "webhook_parallel_processing": True,
            "webhook_max_parallel_events": 2,
        })
        recorder = MagicMock()

        async def _record(tenant, event, processed_at):
            if event.event == "click":
                raise ValueError("bad click")
            return ProcessedEventResult(success=True, event_id=event.sg_event_id, event_type=event.event)

        recorder.record = AsyncMock(side_effect=_record)
        orchestrator = MagicMock()
        orchestrator.process_batch = AsyncMock()
        gateway = WebhookGateway(verifier, session_factory, recorder, orchestrator, settings)
        headers, body = signed_request([
            provider_event(tenant_id, "delivered"),
            provider_event(tenant_id, "open"),
            provider_event(tenant_id, "click"),
        ])

        result = await gateway.process("sendgrid", headers, body)

        assert recorder.record.await_count == 3
        assert result.successful_events == 2
        assert result.failed_events == 1
        assert [r.event_type for r in result.processed_events] == ["delivered", "open", "click"]
        orchestrator.process_batch.assert_awaited_once()
