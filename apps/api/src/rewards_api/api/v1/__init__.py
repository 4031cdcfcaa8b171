from fastapi import APIRouter

from .endpoints import (
    actions,
    events,
    health,
    observability,
    rewards,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(events.router)
router.include_router(rewards.router)
router.include_router(actions.router)
router.include_router(observability.router)
