"""Translate domain errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from rewards_api.services.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    OutOfStockError,
    RewardServiceError,
    TransientInfraError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[RewardServiceError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (OutOfStockError, status.HTTP_409_CONFLICT),
    (TransientInfraError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: RewardServiceError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail={"code": exc.code, "message": str(exc)})
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": exc.code, "message": str(exc)},
    )


__all__ = ["http_error"]
