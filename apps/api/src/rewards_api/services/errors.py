"""Domain error taxonomy shared by services, workflows and the HTTP layer."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

T = TypeVar("T")


class RewardServiceError(RuntimeError):
    """Base exception for reward pipeline failures."""

    code = "reward_error"


class ValidationError(RewardServiceError):
    """Malformed identifier, payload, date range or quantity."""

    code = "validation_error"


class NotFoundError(RewardServiceError):
    """Referenced event, reward or request does not exist."""

    code = "not_found"


class AccessDeniedError(RewardServiceError):
    """Caller is not allowed to see or act on the resource."""

    code = "access_denied"


class InvalidStateTransitionError(RewardServiceError):
    """Raised when a transition violates the reward request state machine."""

    code = "invalid_state_transition"

    def __init__(self, current_status: object, requested_status: object) -> None:
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        super().__init__(f"Cannot transition reward request from {current} to {requested}")
        self.current_status = current_status
        self.requested_status = requested_status


class ConflictError(RewardServiceError):
    """An active request already exists for the same user, event and reward."""

    code = "conflict"


class OutOfStockError(RewardServiceError):
    """Limited reward inventory is exhausted."""

    code = "out_of_stock"

    def __init__(self, reward_id: object) -> None:
        super().__init__(f"Reward {reward_id} is out of stock")
        self.reward_id = reward_id


class TransientInfraError(RewardServiceError):
    """Timeout or lost connection; safe to retry."""

    code = "transient_infra"


async def bounded(awaitable: Awaitable[T], *, timeout: float, operation: str) -> T:
    """Await ``awaitable`` with a deadline, translating infra failures to TransientInfraError."""

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TransientInfraError(f"{operation} timed out after {timeout}s") from exc
    except OperationalError as exc:
        raise TransientInfraError(f"{operation} failed: {exc.orig or exc}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransientInfraError(f"{operation} lost its database connection") from exc
        raise


__all__ = [
    "AccessDeniedError",
    "ConflictError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "OutOfStockError",
    "RewardServiceError",
    "TransientInfraError",
    "ValidationError",
    "bounded",
]
