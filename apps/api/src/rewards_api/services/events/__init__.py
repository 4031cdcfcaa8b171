"""Event definition and activity log services."""

from .event_log import EventLogReader, EventLogService, count_consecutive_days  # noqa: F401
from .event_service import EventService, event_is_active  # noqa: F401
