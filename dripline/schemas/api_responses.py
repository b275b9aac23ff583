"""
API response schemas for the webhook gateway.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ProcessedEventResult(BaseModel):
    """Outcome of recording one provider event."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    event_id: str = Field(alias="eventId")
    event_type: str = Field(alias="eventType")
    message_event_id: Optional[str] = Field(default=None, alias="messageEventId")
    skipped: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None


class WebhookProcessingResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    webhook_delivery_id: str = Field(alias="webhookDeliveryId")
    total_events: int = Field(alias="totalEvents")
    successful_events: int = Field(alias="successfulEvents")
    failed_events: int = Field(alias="failedEvents")
    skipped_events: int = Field(alias="skippedEvents")
    errors: list[str] = Field(default_factory=list)
    processed_events: list[ProcessedEventResult] = Field(default_factory=list, exclude=True)

    @classmethod
    def from_results(
        cls, delivery_id: str, total_events: int, results: list[ProcessedEventResult],
    ) -> "WebhookProcessingResult":
        return cls(
            success=True,
            webhook_delivery_id=delivery_id,
            total_events=total_events,
            successful_events=sum(1 for r in results if r.success and not r.skipped),
            failed_events=sum(1 for r in results if not r.success),
            skipped_events=sum(1 for r in results if r.skipped),
            errors=[r.error for r in results if r.error],
            processed_events=results,
        )


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[dict] = None


class WebhookErrorResponse(BaseModel):
    """Envelope for a rejected webhook request."""
    success: bool = False
    error: ErrorDetail


class WebhookHealthResponse(BaseModel):
    status: str
    provider: str
    enabled: bool
    timestamp: str
