"""
Webhook error type - the only exception that crosses from the service layer
into the HTTP layer. Per-event failures are reported in results, not raised.
"""
from typing import Any, Optional

from dripline.schemas.api_responses import ErrorDetail, WebhookErrorResponse


class WebhookError(Exception):
    """Terminal failure for one webhook request, carrying its HTTP status."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details

    def to_response(self) -> dict[str, Any]:
        """Wire body: {"success": false, "error": {"code", "message", "details"?}}."""
        envelope = WebhookErrorResponse(
            error=ErrorDetail(code=self.code, message=self.message, details=self.details or None),
        )
        return envelope.model_dump(exclude_none=True)


# Error codes
SIGNATURE_VERIFICATION_FAILED = "SIGNATURE_VERIFICATION_FAILED"
INVALID_JSON = "INVALID_JSON"
INVALID_PAYLOAD_FORMAT = "INVALID_PAYLOAD_FORMAT"
EMPTY_PAYLOAD = "EMPTY_PAYLOAD"
NO_RECORDABLE_EVENTS = "NO_RECORDABLE_EVENTS"
MISSING_TENANT_ID = "MISSING_TENANT_ID"
UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
WEBHOOK_DISABLED = "WEBHOOK_DISABLED"
PROCESSING_FAILED = "PROCESSING_FAILED"
