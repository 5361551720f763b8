"""Route exports for the API layer.

Re-exports the storage router so callers can include all operational endpoints with a single import.
"""

from .storage import router as storage_router

__all__ = ["storage_router"]
