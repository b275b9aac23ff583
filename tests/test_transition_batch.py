"""
Tests for dripline/services/transition_batch.py - per-delivery transition batches.
"""
import uuid
import pytest
from datetime import datetime, timezone

from dripline.models.message_event import MessageEvent
from dripline.schemas.api_responses import ProcessedEventResult
from dripline.services.plan_execution import PlanExecutionEngine
from dripline.services.transition_batch import TransitionBatchOrchestrator


@pytest.fixture
def orchestrator(session_factory, mock_publisher):
    return TransitionBatchOrchestrator(session_factory, PlanExecutionEngine(mock_publisher))


@pytest.fixture
def record_event(db):
    """Insert a MessageEvent and return the recorder-style result for it."""

    async def _record(tenant_id, message_id, event_type: str) -> ProcessedEventResult:
        event = MessageEvent(
            tenant_id=tenant_id,
            message_id=str(message_id),
            type=event_type,
            event_at=datetime.now(timezone.utc),
            provider_event_id=f"evt_{uuid.uuid4().hex[:10]}",
        )
        db.add(event)
        await db.commit()
        return ProcessedEventResult(
            success=True,
            event_id=event.provider_event_id,
            event_type=event_type,
            message_event_id=str(event.id),
        )

    return _record


class TestProcessBatch:
    @pytest.mark.asyncio
    async def test_single_event_transitions(self, db, tenant_id, make_campaign, record_event, orchestrator):
        campaign, message = await make_campaign()
        result = await record_event(tenant_id, message.id, "opened")

        summary = await orchestrator.process_batch(tenant_id, [result])
        await db.refresh(campaign)

        assert summary.candidates == 1
        assert summary.transitioned == 1
        assert campaign.current_node_id == "follow_up"

    @pytest.mark.asyncio
    async def test_events_applied_in_payload_order(self, db, tenant_id, make_campaign, record_event, orchestrator):
        """opened then clicked in one delivery walks intro -> follow_up -> done."""
        campaign, message = await make_campaign()
        opened = await record_event(tenant_id, message.id, "opened")
        clicked = await record_event(tenant_id, message.id, "clicked")

        summary = await orchestrator.process_batch(tenant_id, [opened, clicked])
        await db.refresh(campaign)

        assert summary.transitioned == 2
        assert campaign.current_node_id == "done"
        assert campaign.status == "completed"

    @pytest.mark.asyncio
    async def test_reverse_order_does_not_transition_twice(
        self, db, tenant_id, make_campaign, record_event, orchestrator,
    ):
        campaign, message = await make_campaign()
        clicked = await record_event(tenant_id, message.id, "clicked")
        opened = await record_event(tenant_id, message.id, "opened")

        summary = await orchestrator.process_batch(tenant_id, [clicked, opened])
        await db.refresh(campaign)

        assert summary.no_transition == 1
        assert summary.transitioned == 1
        assert campaign.current_node_id == "follow_up"

    @pytest.mark.asyncio
    async def test_event_without_matching_edge(self, db, tenant_id, make_campaign, record_event, orchestrator):
        campaign, message = await make_campaign(current_node_id="follow_up")
        result = await record_event(tenant_id, message.id, "bounced")

        summary = await orchestrator.process_batch(tenant_id, [result])
        await db.refresh(campaign)

        assert summary.no_transition == 1
        assert campaign.current_node_id == "follow_up"

    @pytest.mark.asyncio
    async def test_unresolvable_message_skipped(self, tenant_id, record_event, orchestrator):
        result = await record_event(tenant_id, "sg.message.1", "opened")

        summary = await orchestrator.process_batch(tenant_id, [result])

        assert summary.candidates == 1
        assert summary.skipped == 1
        assert summary.transitioned == 0

    @pytest.mark.asyncio
    async def test_completed_campaign_skipped(self, tenant_id, make_campaign, record_event, orchestrator):
        _, message = await make_campaign(status="completed")
        result = await record_event(tenant_id, message.id, "opened")

        summary = await orchestrator.process_batch(tenant_id, [result])

        assert summary.skipped == 1

    @pytest.mark.asyncio
    async def test_other_tenant_message_not_resolved(self, tenant_id, make_campaign, record_event, orchestrator):
        other = uuid.uuid4()
        _, message = await make_campaign(tenant=other)
        result = await record_event(tenant_id, message.id, "opened")

        summary = await orchestrator.process_batch(tenant_id, [result])

        assert summary.skipped == 1

    @pytest.mark.asyncio
    async def test_skipped_and_failed_results_ignored(self, tenant_id, orchestrator):
        results = [
            ProcessedEventResult(success=True, event_id="a", event_type="open", skipped=True),
            ProcessedEventResult(success=False, event_id="b", event_type="open", error="boom"),
        ]

        summary = await orchestrator.process_batch(tenant_id, results)

        assert summary.candidates == 0

    @pytest.mark.asyncio
    async def test_invalid_plan_isolated(self, db, tenant_id, make_campaign, record_event, orchestrator):
        broken, broken_message = await make_campaign(plan={"timezone": "UTC", "nodes": []})
        healthy, healthy_message = await make_campaign()
        first = await record_event(tenant_id, broken_message.id, "opened")
        second = await record_event(tenant_id, healthy_message.id, "opened")

        summary = await orchestrator.process_batch(tenant_id, [first, second])
        await db.refresh(healthy)

        assert summary.failed == 1
        assert summary.transitioned == 1
        assert healthy.current_node_id == "follow_up"
