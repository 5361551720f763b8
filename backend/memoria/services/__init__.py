"""Storage services: embedding generation, backend clients and the provider facade."""

from .embeddings import EmbeddingGenerator
from .relational_store import PostgresStore, RelationalStoreClient, SQLiteStore
from .storage_provider import StorageProvider
from .vector_store import VectorStoreClient

__all__ = [
    "EmbeddingGenerator",
    "PostgresStore",
    "RelationalStoreClient",
    "SQLiteStore",
    "StorageProvider",
    "VectorStoreClient",
]
