"""
Webhook gateway - the single entry point for delivery-provider webhooks.

Pipeline: verify signature -> parse -> resolve tenant -> archive raw
delivery -> record events -> mark delivery -> campaign transitions.

The archive write commits before any event is recorded, and transitions only
start after recording finishes. Transition errors are logged and never change
the webhook response: by then the events are safely stored.
"""
import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dripline.config import Settings
from dripline.errors import (
    WebhookError,
    MISSING_TENANT_ID,
    PROCESSING_FAILED,
    SIGNATURE_VERIFICATION_FAILED,
)
from dripline.schemas.api_responses import ProcessedEventResult, WebhookProcessingResult
from dripline.schemas.provider_events import ProviderEventBase
from dripline.services import delivery_archive
from dripline.services.event_normalizer import extract_tenant_id, parse_and_validate
from dripline.services.event_recorder import EventRecorder
from dripline.services.transition_batch import TransitionBatchOrchestrator
from dripline.utils.logging import sanitize_headers
from dripline.utils.webhook_signatures import SignatureVerifier, compute_payload_hash

logger = logging.getLogger(__name__)


def parse_tenant_id(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class WebhookGateway:
    def __init__(
        self,
        verifier: SignatureVerifier,
        session_factory: async_sessionmaker[AsyncSession],
        recorder: EventRecorder,
        orchestrator: TransitionBatchOrchestrator,
        settings: Settings,
    ):
        self.verifier = verifier
        self.session_factory = session_factory
        self.recorder = recorder
        self.orchestrator = orchestrator
        self.settings = settings

    async def process(
        self, provider: str, headers: Mapping[str, str], raw_body: bytes,
    ) -> WebhookProcessingResult:
        """
        Process one webhook request.

        Raises WebhookError for request-level failures (401 bad signature,
        400 bad payload or missing tenant, 500 unexpected). Per-event
        failures are reported in the result instead.
        """
        started = time.monotonic()
        processed_at = datetime.now(timezone.utc)
        logger.info(
            "Processing %s webhook: bytes=%d sha256=%s headers=%s",
            provider, len(raw_body), compute_payload_hash(raw_body)[:16], sanitize_headers(headers),
            extra={"provider": provider},
        )

        try:
            verification = self.verifier.verify(headers, raw_body)
            if not verification.valid:
                raise WebhookError(
                    f"Webhook signature verification failed: {verification.error}",
                    SIGNATURE_VERIFICATION_FAILED,
                    401,
                )

            events = parse_and_validate(raw_body)

            # Tenant context is a data isolation boundary: reject before any write
            tenant_id = parse_tenant_id(extract_tenant_id(events))
            if tenant_id is None:
                raise WebhookError(
                    "Unable to determine tenant ID from webhook events",
                    MISSING_TENANT_ID,
                    400,
                )

            async with self.session_factory() as db:
                delivery = await delivery_archive.archive(
                    db, tenant_id, provider, verification.signature, events,
                )
                results = await self._record_events(tenant_id, events, processed_at)
                status = await delivery_archive.complete(db, delivery, results)

            try:
                await self.orchestrator.process_batch(tenant_id, results)
            except Exception as e:
                logger.error(
                    "Campaign transition batch failed for delivery %s: %s",
                    str(delivery.id)[:8], str(e),
                    exc_info=True,
                    extra={"tenant_id": str(tenant_id), "delivery_id": str(delivery.id)},
                )

            result = WebhookProcessingResult.from_results(
                str(delivery.id), len(events), results,
            )
            logger.info(
                "Webhook processed: status=%s total=%d ok=%d failed=%d skipped=%d in %dms",
                status, result.total_events, result.successful_events,
                result.failed_events, result.skipped_events,
                int((time.monotonic() - started) * 1000),
                extra={"tenant_id": str(tenant_id), "provider": provider, "delivery_id": str(delivery.id)},
            )
            return result

        except WebhookError as e:
            logger.warning(
                "Webhook rejected: %s", e.message,
                extra={"provider": provider, "error_code": e.code},
            )
            raise
        except Exception as e:
            logger.error(
                "Webhook processing failed: %s", str(e),
                exc_info=True,
                extra={"provider": provider, "error_code": PROCESSING_FAILED},
            )
            raise WebhookError(
                f"Webhook processing failed: {e}", PROCESSING_FAILED, 500,
            ) from e

    async def _record_events(
        self, tenant_id: uuid.UUID, events: list[ProviderEventBase], processed_at: datetime,
    ) -> list[ProcessedEventResult]:
        if not self.settings.webhook_parallel_processing:
            results = []
            for event in events:
                try:
                    results.append(await self.recorder.record(tenant_id, event, processed_at))
                except Exception as e:
                    results.append(self._failure(tenant_id, event, e))
            return results

        semaphore = asyncio.Semaphore(self.settings.webhook_max_parallel_events)

        async def _bounded(event: ProviderEventBase) -> ProcessedEventResult:
            async with semaphore:
                return await self.recorder.record(tenant_id, event, processed_at)

        outcomes = await asyncio.gather(
            *(_bounded(event) for event in events), return_exceptions=True,
        )
        results = []
        for event, outcome in zip(events, outcomes):
            if isinstance(outcome, BaseException):
                results.append(self._failure(tenant_id, event, outcome))
            else:
                results.append(outcome)
        return results

    @staticmethod
    def _failure(
        tenant_id: uuid.UUID, event: ProviderEventBase, error: BaseException,
    ) -> ProcessedEventResult:
        logger.error(
            "Failed to record %s event %s: %s", event.event, event.sg_event_id, str(error),
            extra={"tenant_id": str(tenant_id), "event_id": event.sg_event_id},
        )
        return ProcessedEventResult(
            success=False,
            event_id=event.sg_event_id,
            event_type=event.event,
            error=str(error) or type(error).__name__,
        )
