"""SQLAlchemy models package."""

# Import all models
from .event import ApprovalMode, EventDefinition, EventStatus, EventType  # noqa: F401
from .event_log import EventLogEntry  # noqa: F401
from .reward import UNLIMITED_QUANTITY, Reward, RewardType  # noqa: F401
from .reward_request import (  # noqa: F401
    RewardRequest,
    RewardRequestActorType,
    RewardRequestStateEvent,
    RewardRequestStateEventType,
    RewardRequestStatus,
)
from .workflow import WorkflowRun, WorkflowRunStatus, WorkflowStepResult  # noqa: F401
