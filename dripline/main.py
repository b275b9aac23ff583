"""
Dripline - event-driven email campaign execution.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from dripline.config import Settings, get_settings
from dripline.api.router import api_router
from dripline.database import get_session_factory, dispose_engine
from dripline.services.event_recorder import EventRecorder
from dripline.services.plan_execution import PlanExecutionEngine
from dripline.services.task_dispatch import TaskPublisher
from dripline.services.transition_batch import TransitionBatchOrchestrator
from dripline.services.webhook_gateway import WebhookGateway
from dripline.utils.dedup import close_redis
from dripline.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from dripline.utils.webhook_signatures import SignatureVerifier
from dripline.workers.task_processor import TaskProcessor

logger = logging.getLogger("dripline")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def build_webhook_gateway(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    engine: PlanExecutionEngine,
) -> WebhookGateway:
    """Wire the gateway and its collaborators from settings."""
    verifier = SignatureVerifier(
        settings.webhook_secret,
        max_age_seconds=settings.webhook_max_timestamp_age_seconds,
        future_skew_seconds=settings.webhook_future_skew_seconds,
    )
    recorder = EventRecorder(
        session_factory,
        duplicate_detection=settings.webhook_duplicate_detection,
    )
    orchestrator = TransitionBatchOrchestrator(session_factory, engine)
    return WebhookGateway(verifier, session_factory, recorder, orchestrator, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Dripline starting up (env=%s)", settings.app_env)

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    session_factory = get_session_factory()
    engine = PlanExecutionEngine(TaskPublisher.from_settings(settings))
    app.state.plan_engine = engine
    app.state.webhook_gateway = build_webhook_gateway(settings, session_factory, engine)
    if not settings.webhook_enabled:
        logger.warning("Webhook processing disabled (WEBHOOK_ENABLED=false)")

    worker_tasks: list[asyncio.Task] = []
    if settings.task_processor_enabled:
        processor = TaskProcessor(session_factory, engine)
        worker_tasks.append(asyncio.create_task(processor.run()))
        logger.info("Task processor started")
    else:
        logger.info("Task processor disabled (TASK_PROCESSOR_ENABLED=false)")

    yield

    # Graceful shutdown - give workers time to finish current work
    logger.info("Dripline shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    await close_redis()
    await dispose_engine()
    logger.info("Dripline shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Dripline",
        description="Event-driven email campaign execution",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)

    return application


app = create_app()
