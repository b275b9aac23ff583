"""
Webhook endpoints - receive delivery events from email providers.
Each request is handed to the WebhookGateway built at startup.

Security layers (in order):
1. Feature flag
2. Rate limiting (per client IP)
3. Payload size limit
4. Signature validation (inside the gateway)
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from dripline.config import Settings, get_settings
from dripline.errors import (
    WebhookError,
    PAYLOAD_TOO_LARGE,
    UNSUPPORTED_PROVIDER,
    WEBHOOK_DISABLED,
)
from dripline.schemas.api_responses import WebhookHealthResponse
from dripline.services.webhook_gateway import WebhookGateway
from dripline.utils.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

SUPPORTED_PROVIDERS = frozenset({"sendgrid"})


def get_gateway(request: Request) -> WebhookGateway:
    return request.app.state.webhook_gateway


def _require_provider(provider: str) -> str:
    provider = provider.lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise WebhookError(
            f"Unsupported webhook provider: {provider}", UNSUPPORTED_PROVIDER, 404,
        )
    return provider


async def _enforce_rate_limit(request: Request, settings: Settings) -> None:
    """Check rate limits and raise 429 if exceeded."""
    client_ip = request.client.host if request.client else "unknown"
    allowed, retry_after = await check_rate_limit(
        f"webhook:ip:{client_ip}", settings.webhook_rate_limit_per_minute,
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(retry_after or 60)},
        )


def _error_response(error: WebhookError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_response())


@router.post("/{provider}/events")
async def receive_events(
    provider: str,
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: WebhookGateway = Depends(get_gateway),
):
    """
    Delivery provider event webhook.
    Returns per-event counts; per-event failures never fail the request.
    """
    try:
        provider = _require_provider(provider)
        if not settings.webhook_enabled:
            raise WebhookError("Webhook processing is disabled", WEBHOOK_DISABLED, 503)
    except WebhookError as e:
        return _error_response(e)

    await _enforce_rate_limit(request, settings)

    body = await request.body()
    if len(body) > settings.webhook_max_payload_bytes:
        logger.warning(
            "Webhook payload too large: %d bytes (limit %d)",
            len(body), settings.webhook_max_payload_bytes,
            extra={"provider": provider, "error_code": PAYLOAD_TOO_LARGE},
        )
        return _error_response(WebhookError(
            "Webhook payload exceeds size limit",
            PAYLOAD_TOO_LARGE,
            413,
            details={"maxBytes": settings.webhook_max_payload_bytes, "receivedBytes": len(body)},
        ))

    try:
        result = await gateway.process(provider, dict(request.headers), body)
    except WebhookError as e:
        return _error_response(e)

    return JSONResponse(status_code=200, content=result.model_dump(by_alias=True))


@router.get("/{provider}/health")
async def webhook_health(
    provider: str,
    settings: Settings = Depends(get_settings),
):
    """Liveness of a provider webhook endpoint."""
    try:
        provider = _require_provider(provider)
    except WebhookError as e:
        return _error_response(e)

    return WebhookHealthResponse(
        status="healthy" if settings.webhook_enabled else "disabled",
        provider=provider,
        enabled=settings.webhook_enabled,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
