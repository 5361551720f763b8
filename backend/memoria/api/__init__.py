"""API router composition for the storage service.

The module assembles individual route groups into a single `api_router` that can be mounted on the app.
"""

from fastapi import APIRouter

from memoria.api.routes.storage import router as storage_router

api_router = APIRouter()
api_router.include_router(storage_router)

__all__ = ["api_router"]
