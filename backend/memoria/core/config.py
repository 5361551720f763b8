"""Runtime configuration helpers.

Classes:
    RelationalBackend, VectorBackend, EmbeddingProviderKind: Closed sets of backend choices.
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    load_settings(**overrides): Build the Settings instance once at process start.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LOCAL_QDRANT_URL = "http://localhost:6333"


class RelationalBackend(str, Enum):
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class VectorBackend(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class EmbeddingProviderKind(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Memoria Storage API"
    log_level: str = "INFO"

    relational_provider: RelationalBackend = RelationalBackend.SQLITE
    sqlite_filename: str = "./data/memoria.db"
    sqlite_path: str | None = None
    database_url: str | None = None
    postgres_host: str | None = None
    postgres_port: int = 5432
    postgres_db: str | None = None
    postgres_user: str | None = None
    postgres_password: SecretStr | None = None
    postgres_ssl: bool = False
    postgres_ssl_mode: str | None = None
    relational_pool_size: int = Field(default=10, ge=1)
    relational_timeout: float = Field(default=30.0, gt=0)

    vector_provider: VectorBackend = VectorBackend.LOCAL
    qdrant_url: str | None = None
    qdrant_api_key: SecretStr | None = None
    qdrant_collection: str = "memoria"
    qdrant_vector_size: int = Field(default=1536, ge=1)
    qdrant_distance: str = "cosine"
    qdrant_timeout: float = Field(default=30.0, gt=0)
    qdrant_retry_attempts: int = Field(default=3, ge=1)

    embedding_provider: EmbeddingProviderKind = EmbeddingProviderKind.REMOTE
    openai_api_key: SecretStr | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    local_embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_cache_size: int = Field(default=1000, ge=1)
    embedding_fallback_scale: float = 0.1
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_timeout: float = Field(default=60.0, ge=0)

    backup_dir: str = "./data/backups"

    @field_validator("qdrant_distance")
    @classmethod
    def _normalise_distance(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in {"cosine", "euclidean", "euclid", "dot", "manhattan"}:
            raise ValueError("qdrant_distance must be cosine, euclidean, dot, or manhattan")
        return lowered

    @property
    def sqlite_location(self) -> Path:
        if self.sqlite_path:
            return Path(self.sqlite_path) / self.sqlite_filename
        return Path(self.sqlite_filename)


def load_settings(**overrides: Any) -> Settings:
    return Settings(**overrides)
