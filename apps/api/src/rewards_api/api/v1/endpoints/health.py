from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:  # pragma: no cover - exercised only with a broken database
        logger.warning("Readiness database probe failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail=f"Database unreachable ({exc})")
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    worker = getattr(request.app.state, "reward_dispatch_worker", None)
    if settings.celery_broker_url:
        components["reward_dispatch"] = ComponentStatus(
            status="ready",
            detail=f"Celery queue {settings.reward_workflow_task_queue}",
        )
    elif settings.reward_dispatch_worker_enabled and worker is not None:
        running = bool(getattr(worker, "is_running", False))
        components["reward_dispatch"] = ComponentStatus(
            status="ready" if running else "starting",
            detail=None if running else "Reward dispatch worker not running",
        )
        if not running:
            status = "degraded" if status != "error" else status
    else:
        components["reward_dispatch"] = ComponentStatus(
            status="disabled",
            detail="Reward dispatch worker disabled via settings (queued workflows wait for a worker)",
        )

    return ReadinessPayload(status=status, components=components)
