from fastapi import APIRouter

from gruff.core.health import live_payload, ready_payload

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
async def health_ready() -> dict:
    return await ready_payload()
