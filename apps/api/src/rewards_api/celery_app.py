"""Celery application for reward workflow execution."""

from __future__ import annotations

from celery import Celery
from celery.signals import worker_process_init

from rewards_api.core.logging import configure_logging
from rewards_api.core.settings import settings
from rewards_api.observability.tracing import configure_worker_tracing

WORKER_SERVICE_NAME = "rewards-worker"
WORKER_VERSION = "0.1.0"


def _resolve_backend_url() -> str:
    if settings.celery_result_backend:
        return settings.celery_result_backend
    return settings.redis_url


def _resolve_broker_url() -> str:
    if settings.celery_broker_url:
        return settings.celery_broker_url
    return settings.redis_url


celery_app = Celery(
    "rewards_api",
    broker=_resolve_broker_url(),
    backend=_resolve_backend_url(),
)

celery_app.conf.update(
    task_default_queue=settings.celery_default_queue,
    task_routes={"reward_workflows.*": {"queue": settings.reward_workflow_task_queue}},
    # At-least-once delivery; executed runs replay memoized steps.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
)

celery_app.autodiscover_tasks(["rewards_api.celery_tasks"])


@worker_process_init.connect
def _init_worker_process(**_: object) -> None:
    configure_logging(service_name=WORKER_SERVICE_NAME, environment=settings.environment, version=WORKER_VERSION)
    configure_worker_tracing(
        service_name=WORKER_SERVICE_NAME,
        service_version=WORKER_VERSION,
        environment=settings.environment,
    )


__all__ = ["celery_app"]
