"""Event administration and activity-window lookups."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.db.base import ensure_aware
from rewards_api.models.event import EventDefinition, EventStatus, EventType
from rewards_api.models.reward import Reward
from rewards_api.schemas.conditions import parse_condition
from rewards_api.schemas.events import EventCreate, EventUpdate
from rewards_api.services.errors import NotFoundError, ValidationError


class EventService:
    """CRUD for event definitions. Events are never hard-deleted."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_event(self, payload: EventCreate, *, created_by: str | None = None) -> EventDefinition:
        _validate_window(payload.start_date, payload.end_date)
        _validate_condition(payload.event_type, payload.condition)

        event = EventDefinition(
            name=payload.name,
            description=payload.description,
            event_type=payload.event_type,
            condition=payload.condition,
            start_date=ensure_aware(payload.start_date),
            end_date=ensure_aware(payload.end_date),
            status=payload.status,
            approval_mode=payload.approval_mode,
            created_by=created_by,
        )
        self._session.add(event)
        await self._session.commit()
        logger.info(
            "Reward event created",
            event_id=str(event.id),
            event_type=event.event_type.value,
            approval_mode=event.approval_mode.value,
            created_by=created_by,
        )
        return event

    async def update_event(self, event_id: UUID, payload: EventUpdate) -> EventDefinition:
        event = await self.get_event(event_id)
        updates = payload.model_dump(exclude_unset=True)

        start = updates.get("start_date", event.start_date)
        end = updates.get("end_date", event.end_date)
        if "start_date" in updates or "end_date" in updates:
            _validate_window(start, end)
            for field in ("start_date", "end_date"):
                if updates.get(field) is not None:
                    updates[field] = ensure_aware(updates[field])
        if "condition" in updates:
            _validate_condition(event.event_type, updates["condition"])

        for field, value in updates.items():
            setattr(event, field, value)
        await self._session.commit()
        logger.info("Reward event updated", event_id=str(event.id), fields=sorted(updates))
        return event

    async def set_event_status(self, event_id: UUID, status: EventStatus) -> EventDefinition:
        event = await self.get_event(event_id)
        previous = event.status
        event.status = status
        await self._session.commit()
        logger.info(
            "Reward event status changed",
            event_id=str(event.id),
            from_status=previous.value,
            to_status=status.value,
        )
        return event

    async def get_event(self, event_id: UUID) -> EventDefinition:
        event = await self._session.get(EventDefinition, event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    async def find_event(self, event_id: UUID) -> EventDefinition | None:
        return await self._session.get(EventDefinition, event_id)

    async def list_events(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        status: EventStatus | None = None,
    ) -> tuple[list[EventDefinition], int]:
        stmt = select(EventDefinition)
        count_stmt = select(func.count()).select_from(EventDefinition)
        if status is not None:
            stmt = stmt.where(EventDefinition.status == status)
            count_stmt = count_stmt.where(EventDefinition.status == status)
        stmt = stmt.order_by(EventDefinition.created_at.desc()).offset((page - 1) * limit).limit(limit)

        result = await self._session.execute(stmt)
        total = (await self._session.execute(count_stmt)).scalar_one()
        return list(result.scalars()), int(total)

    async def list_active_events(self, *, now: datetime | None = None) -> list[EventDefinition]:
        moment = now or datetime.now(timezone.utc)
        stmt = (
            select(EventDefinition)
            .where(
                EventDefinition.status == EventStatus.ACTIVE,
                EventDefinition.start_date <= moment,
                EventDefinition.end_date >= moment,
            )
            .order_by(EventDefinition.end_date.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def is_event_active(
        self,
        event_id: UUID,
        *,
        now: datetime | None = None,
    ) -> tuple[bool, EventDefinition | None]:
        """Active iff status is ACTIVE and ``now`` lies inside [start, end]."""

        event = await self.find_event(event_id)
        if event is None:
            return False, None
        return event_is_active(event, now=now), event

    async def find_rewards_for_event(self, event_id: UUID) -> Sequence[Reward]:
        stmt = select(Reward).where(Reward.event_id == event_id).order_by(Reward.created_at.asc())
        result = await self._session.execute(stmt)
        return list(result.scalars())


def event_is_active(event: EventDefinition, *, now: datetime | None = None) -> bool:
    if event.status != EventStatus.ACTIVE:
        return False
    moment = ensure_aware(now or datetime.now(timezone.utc))
    return ensure_aware(event.start_date) <= moment <= ensure_aware(event.end_date)


def _validate_window(start: datetime, end: datetime) -> None:
    if ensure_aware(end) <= ensure_aware(start):
        raise ValidationError("Event end date must be after its start date")


def _validate_condition(event_type: EventType, condition: dict | None) -> None:
    try:
        parse_condition(event_type, condition)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid condition for {event_type.value}: {exc.errors()[0]['msg']}") from exc


__all__ = ["EventService", "event_is_active"]
