"""Transaction boundary helper for multi-write operations."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def unit_of_work(session: AsyncSession, *, label: str) -> AsyncIterator[AsyncSession]:
    """Commit everything written inside the block, or nothing.

    The body must not commit on its own. Any exception rolls the session back
    and is re-raised unchanged so callers can map it to a request outcome.
    """

    try:
        yield session
        await session.commit()
    except BaseException as exc:
        await session.rollback()
        logger.debug("Unit of work rolled back", label=label, error=str(exc) or type(exc).__name__)
        raise


__all__ = ["unit_of_work"]
