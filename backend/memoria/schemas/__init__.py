"""Convenience exports for storage schemas.

Re-exports the pydantic models used across the package so consumers can import from one module.
"""

from .storage import (
    BackendHealth,
    BackupManifest,
    RelationalSnapshot,
    RelationalStats,
    RestoreSummary,
    StorageHealth,
    StorageStats,
    VectorStats,
)
from .vector import (
    CodeMetadata,
    EmbeddingProgress,
    SearchResult,
    VectorDocument,
    VectorExport,
    VectorExportMetadata,
)

__all__ = [
    "BackendHealth",
    "BackupManifest",
    "CodeMetadata",
    "EmbeddingProgress",
    "RelationalSnapshot",
    "RelationalStats",
    "RestoreSummary",
    "SearchResult",
    "StorageHealth",
    "StorageStats",
    "VectorDocument",
    "VectorExport",
    "VectorExportMetadata",
    "VectorStats",
]
