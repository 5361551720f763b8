"""Build storage components from a Settings instance.

Functions:
    create_embedding_generator(settings): Generator with the tiers the configuration enables.
    create_relational_store(settings): SQLite or PostgreSQL store.
    create_vector_store(settings, embeddings=None, transport=None): Qdrant client for a local or remote instance.
    create_storage_provider(settings): Both stores wrapped in a StorageProvider.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from memoria.core.config import (
    DEFAULT_LOCAL_QDRANT_URL,
    EmbeddingProviderKind,
    RelationalBackend,
    Settings,
    VectorBackend,
)
from memoria.core.errors import StorageValidationError
from memoria.services.circuit_breaker import CircuitBreaker
from memoria.services.embedding_cache import EmbeddingCache
from memoria.services.embedding_providers import OpenAIEmbeddingProvider, SentenceTransformerModel
from memoria.services.embeddings import EmbeddingGenerator
from memoria.services.relational_store import PostgresStore, RelationalStoreClient, SQLiteStore
from memoria.services.storage_provider import StorageProvider
from memoria.services.vector_store import VectorStoreClient

_LOGGER = logging.getLogger(__name__)


def _secret(value) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


def create_embedding_generator(settings: Settings) -> EmbeddingGenerator:
    remote = None
    api_key = _secret(settings.openai_api_key)
    if settings.embedding_provider == EmbeddingProviderKind.REMOTE:
        if api_key:
            remote = OpenAIEmbeddingProvider(api_key=api_key, model=settings.openai_embedding_model)
        else:
            _LOGGER.warning("Remote embeddings selected but OPENAI_API_KEY is not set; using local tiers only")

    return EmbeddingGenerator(
        settings.qdrant_vector_size,
        remote=remote,
        local=SentenceTransformerModel(settings.local_embedding_model),
        cache=EmbeddingCache(settings.embedding_cache_size),
        breaker=CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_timeout,
        ),
        fallback_scale=settings.embedding_fallback_scale,
    )


def create_relational_store(settings: Settings) -> RelationalStoreClient:
    if settings.relational_provider == RelationalBackend.POSTGRESQL:
        return PostgresStore(
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_db,
            user=settings.postgres_user,
            password=_secret(settings.postgres_password),
            ssl=settings.postgres_ssl,
            ssl_mode=settings.postgres_ssl_mode,
            database_url=settings.database_url,
            pool_size=settings.relational_pool_size,
            timeout=settings.relational_timeout,
        )
    return SQLiteStore(
        settings.sqlite_location,
        pool_size=settings.relational_pool_size,
        timeout=settings.relational_timeout,
    )


def create_vector_store(
    settings: Settings,
    embeddings: Optional[EmbeddingGenerator] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> VectorStoreClient:
    if settings.vector_provider == VectorBackend.REMOTE:
        if not settings.qdrant_url:
            raise StorageValidationError("QDRANT_URL is required for the remote vector provider", backend="vector")
        url = settings.qdrant_url
    else:
        url = settings.qdrant_url or DEFAULT_LOCAL_QDRANT_URL

    return VectorStoreClient(
        url,
        collection_name=settings.qdrant_collection,
        vector_size=settings.qdrant_vector_size,
        distance=settings.qdrant_distance,
        api_key=_secret(settings.qdrant_api_key),
        timeout=settings.qdrant_timeout,
        retry_attempts=settings.qdrant_retry_attempts,
        embeddings=embeddings if embeddings is not None else create_embedding_generator(settings),
        transport=transport,
    )


def create_storage_provider(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> StorageProvider:
    return StorageProvider(
        create_relational_store(settings),
        create_vector_store(settings, transport=transport),
        backup_dir=settings.backup_dir,
    )
