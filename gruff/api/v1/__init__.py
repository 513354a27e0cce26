from fastapi import APIRouter

from gruff.api.v1.routers import entities, groups, health, links

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(groups.router)
api_router.include_router(entities.router)
api_router.include_router(links.router)

__all__ = ["api_router"]
