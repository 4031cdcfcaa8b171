"""Durable workflow dispatch."""

from .dispatcher import (  # noqa: F401
    EXECUTE_RUN_TASK,
    AsyncDispatcher,
    StepRunner,
    WorkflowEvent,
    WorkflowExecutor,
    WorkflowRegistration,
    WorkflowRegistry,
    publish_runs,
    retry_delay_seconds,
)
