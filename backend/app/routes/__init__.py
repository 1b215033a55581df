"""API route registration."""

from fastapi import APIRouter
from .homework import router as homework_router
from .tasks import router as tasks_router


def register_all_routes(api_router: APIRouter):
    """Include all route modules on the main API router."""
    api_router.include_router(homework_router)
    api_router.include_router(tasks_router)
