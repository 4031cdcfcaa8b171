from __future__ import annotations

from loguru import logger

from rewards_api.celery_app import celery_app
from rewards_api.core.settings import settings
from rewards_api.services.dispatch.dispatcher import EXECUTE_RUN_TASK
from rewards_api.tasks.reward_workflows import process_workflow_run_sync


@celery_app.task(
    name=EXECUTE_RUN_TASK,
    queue=settings.reward_workflow_task_queue,
)
def execute_run(run_id: str) -> dict[str, object]:
    """Celery entrypoint for executing a single workflow run."""

    try:
        return process_workflow_run_sync(run_id)
    except Exception as exc:  # pragma: no cover - Celery handles redelivery/logging
        logger.exception("Workflow run execution failed", run_id=run_id)
        raise exc
