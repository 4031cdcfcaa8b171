"""Append-only event log store and the read queries condition strategies replay."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Mapping, Protocol, Sequence

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.db.base import ensure_aware, utcnow
from rewards_api.models.event_log import EventLogEntry
from rewards_api.services.errors import ValidationError, bounded


class EventLogReader(Protocol):
    """Read side consumed by condition strategies."""

    async def get_user_event_logs(
        self,
        user_id: str,
        event_type: str | None = None,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Sequence[EventLogEntry]:
        ...


class EventLogService:
    """Writes and queries the append-only activity log.

    Reads used for eligibility are bounded by ``condition_log_read_timeout_seconds``;
    a timeout or connection loss surfaces as ``TransientInfraError``.
    """

    def __init__(self, session: AsyncSession, *, read_timeout_seconds: float | None = None) -> None:
        self._session = session
        self._read_timeout = read_timeout_seconds or settings.condition_log_read_timeout_seconds

    async def create_log(
        self,
        user_id: str,
        event_type: str,
        data: Mapping[str, Any] | None = None,
        *,
        timestamp: datetime | None = None,
        commit: bool = True,
    ) -> EventLogEntry:
        if not user_id:
            raise ValidationError("user_id is required")
        if not event_type:
            raise ValidationError("event_type is required")
        entry = EventLogEntry(
            user_id=user_id,
            event_type=event_type.upper(),
            data=dict(data or {}),
            timestamp=ensure_aware(timestamp) if timestamp else utcnow(),
        )
        self._session.add(entry)
        if commit:
            await self._session.commit()
        else:
            await self._session.flush()
        logger.info(
            "Event log appended",
            log_id=str(entry.id),
            user_id=user_id,
            event_type=entry.event_type,
        )
        return entry

    async def get_user_event_logs(
        self,
        user_id: str,
        event_type: str | None = None,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[EventLogEntry]:
        """Entries for ``user_id`` newest first, optionally filtered by type and window."""

        stmt = select(EventLogEntry).where(EventLogEntry.user_id == user_id)
        if event_type:
            stmt = stmt.where(EventLogEntry.event_type == event_type.upper())
        if start is not None:
            stmt = stmt.where(EventLogEntry.timestamp >= ensure_aware(start))
        if end is not None:
            stmt = stmt.where(EventLogEntry.timestamp <= ensure_aware(end))
        stmt = stmt.order_by(EventLogEntry.timestamp.desc())

        result = await bounded(
            self._session.execute(stmt),
            timeout=self._read_timeout,
            operation="event log read",
        )
        return list(result.scalars())

    async def get_recent_event_logs(self, limit: int = 100) -> list[EventLogEntry]:
        stmt = select(EventLogEntry).order_by(EventLogEntry.timestamp.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def count_user_event_logs(self, user_id: str, event_type: str | None = None) -> int:
        stmt = select(func.count()).select_from(EventLogEntry).where(EventLogEntry.user_id == user_id)
        if event_type:
            stmt = stmt.where(EventLogEntry.event_type == event_type.upper())
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def list_logs(
        self,
        *,
        user_id: str | None = None,
        event_type: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[EventLogEntry], int]:
        stmt = select(EventLogEntry)
        count_stmt = select(func.count()).select_from(EventLogEntry)
        if user_id:
            stmt = stmt.where(EventLogEntry.user_id == user_id)
            count_stmt = count_stmt.where(EventLogEntry.user_id == user_id)
        if event_type:
            stmt = stmt.where(EventLogEntry.event_type == event_type.upper())
            count_stmt = count_stmt.where(EventLogEntry.event_type == event_type.upper())
        stmt = stmt.order_by(EventLogEntry.timestamp.desc()).offset((page - 1) * limit).limit(limit)

        result = await self._session.execute(stmt)
        total = (await self._session.execute(count_stmt)).scalar_one()
        return list(result.scalars()), int(total)

    async def calculate_consecutive_events(
        self,
        user_id: str,
        event_type: str,
        *,
        max_day_gap: int | None = None,
    ) -> int:
        logs = await self.get_user_event_logs(user_id, event_type)
        return count_consecutive_days(
            (entry.timestamp for entry in logs),
            max_day_gap=max_day_gap or settings.condition_daily_login_max_day_gap,
        )


def count_consecutive_days(timestamps: Iterable[datetime], *, max_day_gap: int = 1) -> int:
    """Length of the streak ending at the most recent UTC calendar day.

    Several entries on one day count once; a gap larger than ``max_day_gap``
    days ends the streak.
    """

    days: list[date] = sorted({ensure_aware(value).date() for value in timestamps}, reverse=True)
    if not days:
        return 0
    streak = 1
    for newer, older in zip(days, days[1:]):
        if (newer - older).days > max_day_gap:
            break
        streak += 1
    return streak


__all__ = ["EventLogReader", "EventLogService", "count_consecutive_days"]
