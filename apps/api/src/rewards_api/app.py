from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from rewards_api.core.settings import settings
from rewards_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .tasks.reward_workflows import default_registry
from .workers import RewardDispatchWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = default_registry()
    dispatch_worker = RewardDispatchWorker(
        session_factory=_session_factory,
        registry=registry,
        interval_seconds=settings.reward_dispatch_poll_interval_seconds,
        batch_size=settings.reward_dispatch_batch_size,
    )
    app.state.workflow_registry = registry
    app.state.reward_dispatch_worker = dispatch_worker

    dispatch_worker_started = False
    if settings.reward_dispatch_worker_enabled and not settings.celery_broker_url:
        dispatch_worker.start()
        dispatch_worker_started = True
        logger.info(
            "Reward dispatch worker enabled (in-process)",
            interval_seconds=dispatch_worker.interval_seconds,
            batch_size=settings.reward_dispatch_batch_size,
        )
    elif settings.celery_broker_url:
        logger.info(
            "Reward workflow Celery worker enabled",
            queue=settings.reward_workflow_task_queue,
        )
    else:
        logger.info(
            "Reward dispatch worker disabled",
            reason="reward_dispatch_worker_enabled is false",
        )

    try:
        yield
    finally:
        if dispatch_worker_started and dispatch_worker.is_running:
            await dispatch_worker.stop()


def create_app() -> FastAPI:
    """Application factory for the rewards FastAPI service."""
    configure_logging(
        service_name="rewards-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Rewards API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="rewards-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
