"""Relational store for structured code-intelligence records.

Classes:
    RelationalStoreState: Lifecycle of a store instance.
    RelationalStoreClient: Typed upsert/update/delete and batched transactions over an async SQLAlchemy engine.
    SQLiteStore: File-backed variant using aiosqlite.
    PostgresStore: Server-backed variant using asyncpg.

Constants:
    MIGRATIONS: Ordered (version, name) pairs applied by ``run_migrations``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import delete, func, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, async_sessionmaker
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from memoria.core.errors import (
    BackendRequestError,
    BackupNotFoundError,
    ConnectionFailureError,
    NotInitializedError,
    StorageValidationError,
    TransactionFailureError,
)
from memoria.db.session import (
    apply_sqlite_pragmas,
    create_postgres_engine,
    create_sqlite_engine,
    make_session_factory,
    postgres_url,
)
from memoria.models import AIInsight, DeveloperPattern, FileIntelligence, Migration, SemanticConcept
from memoria.schemas.storage import BackendHealth, RelationalSnapshot, RelationalStats
from memoria.utils.time import utcnow

_LOGGER = logging.getLogger(__name__)

_BACKEND = "relational"

MIGRATIONS: tuple[tuple[int, str], ...] = ((1, "initial_schema"),)


@dataclass(frozen=True, slots=True)
class _RecordKind:
    label: str
    model: type[SQLModel]
    key: str
    touch: Optional[str]
    order_by: str
    filter_column: Optional[str]

    @property
    def table(self):
        return self.model.__table__


CONCEPTS = _RecordKind("semantic concept", SemanticConcept, "id", "updated_at", "created_at", "file_path")
PATTERNS = _RecordKind("developer pattern", DeveloperPattern, "pattern_id", "last_seen", "last_seen", "pattern_type")
FILES = _RecordKind("file intelligence", FileIntelligence, "file_path", None, "last_analyzed", None)
INSIGHTS = _RecordKind("AI insight", AIInsight, "insight_id", None, "created_at", "insight_type")

_KINDS = (CONCEPTS, PATTERNS, FILES, INSIGHTS)
_TABLES = [Migration.__table__] + [kind.table for kind in _KINDS]


class RelationalStoreState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class RelationalStoreClient:
    """Shared behaviour of the SQL-backed stores.

    Inserting a record whose key already exists overwrites every non-key column
    except ``created_at`` and refreshes the kind's mutation timestamp, so each key
    maps to exactly one row. Subclasses supply the engine and the dialect's
    ``INSERT ... ON CONFLICT`` construct.
    """

    dialect_name = "sql"

    def __init__(self) -> None:
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None
        self._state = RelationalStoreState.UNINITIALIZED

    def _create_engine(self) -> AsyncEngine:
        raise NotImplementedError

    def _insert(self, table):
        raise NotImplementedError

    async def _prepare(self, conn: AsyncConnection) -> None:
        return None

    @property
    def state(self) -> RelationalStoreState:
        return self._state

    def is_ready(self) -> bool:
        return self._state == RelationalStoreState.READY

    async def initialize(self) -> None:
        if self._state == RelationalStoreState.READY:
            return
        engine = self._create_engine()
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                await self._prepare(conn)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            await engine.dispose()
            raise ConnectionFailureError(
                f"Could not connect to {self.dialect_name} database: {exc}",
                backend=_BACKEND,
            ) from exc

        self._engine = engine
        self._sessions = make_session_factory(engine)
        try:
            await self.run_migrations()
        except BackendRequestError:
            await self.close()
            self._state = RelationalStoreState.UNINITIALIZED
            raise
        self._state = RelationalStoreState.READY
        _LOGGER.info("Relational store ready (%s)", self.dialect_name)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None
        self._state = RelationalStoreState.CLOSED
        _LOGGER.info("Relational store closed (%s)", self.dialect_name)

    async def run_migrations(self) -> int:
        """Create missing tables and record pending migrations; returns the resulting version."""

        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, tables=_TABLES))
                current = (await conn.execute(select(func.max(Migration.version)))).scalar() or 0
                for version, name in MIGRATIONS:
                    if version <= current:
                        continue
                    await conn.execute(
                        Migration.__table__.insert().values(version=version, name=name, applied_at=utcnow())
                    )
                    _LOGGER.info("Applied migration %d (%s)", version, name)
                    current = version
        except SQLAlchemyError as exc:
            raise BackendRequestError(f"Schema migration failed: {exc}", backend=_BACKEND) from exc
        return current

    async def get_current_schema_version(self) -> int:
        if self._engine is None:
            return 0
        try:
            async with self._engine.connect() as conn:
                version = (await conn.execute(select(func.max(Migration.version)))).scalar()
        except SQLAlchemyError as exc:
            _LOGGER.debug("Schema version unavailable: %s", exc)
            return 0
        return int(version or 0)

    async def health_check(self) -> BackendHealth:
        if self._engine is None or self._state != RelationalStoreState.READY:
            return BackendHealth(healthy=False, message=f"Relational store is {self._state.value}")
        started = time.perf_counter()
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            return BackendHealth(healthy=False, message=str(exc))
        latency = (time.perf_counter() - started) * 1000.0
        return BackendHealth(healthy=True, message=f"{self.dialect_name} reachable", latency=latency)

    async def insert_semantic_concept(self, concept: Union[SemanticConcept, Mapping[str, Any]]) -> None:
        await self._upsert(CONCEPTS, concept)

    async def insert_semantic_concepts_batch(
        self, concepts: Sequence[Union[SemanticConcept, Mapping[str, Any]]]
    ) -> int:
        return await self._upsert_many(CONCEPTS, concepts)

    async def get_semantic_concepts(self, file_path: Optional[str] = None) -> list[SemanticConcept]:
        return await self._list(CONCEPTS, file_path)

    async def update_semantic_concept(self, concept_id: str, updates: Mapping[str, Any]) -> bool:
        return await self._update(CONCEPTS, concept_id, updates)

    async def delete_semantic_concept(self, concept_id: str) -> bool:
        return await self._delete(CONCEPTS, concept_id)

    async def insert_developer_pattern(self, pattern: Union[DeveloperPattern, Mapping[str, Any]]) -> None:
        await self._upsert(PATTERNS, pattern)

    async def insert_developer_patterns_batch(
        self, patterns: Sequence[Union[DeveloperPattern, Mapping[str, Any]]]
    ) -> int:
        return await self._upsert_many(PATTERNS, patterns)

    async def get_developer_patterns(
        self, pattern_type: Optional[str] = None, limit: Optional[int] = None
    ) -> list[DeveloperPattern]:
        return await self._list(PATTERNS, pattern_type, limit=limit)

    async def update_developer_pattern(self, pattern_id: str, updates: Mapping[str, Any]) -> bool:
        return await self._update(PATTERNS, pattern_id, updates)

    async def delete_developer_pattern(self, pattern_id: str) -> bool:
        return await self._delete(PATTERNS, pattern_id)

    async def insert_file_intelligence(self, record: Union[FileIntelligence, Mapping[str, Any]]) -> None:
        await self._upsert(FILES, record)

    async def insert_file_intelligence_batch(
        self, records: Sequence[Union[FileIntelligence, Mapping[str, Any]]]
    ) -> int:
        return await self._upsert_many(FILES, records)

    async def get_file_intelligence(self, file_path: str) -> Optional[FileIntelligence]:
        sessions = self._require_ready()
        try:
            async with sessions() as session:
                return await session.get(FileIntelligence, file_path)
        except SQLAlchemyError as exc:
            raise self._request_error("read", FILES, exc) from exc

    async def list_file_intelligence(self) -> list[FileIntelligence]:
        return await self._list(FILES, None)

    async def update_file_intelligence(self, file_path: str, updates: Mapping[str, Any]) -> bool:
        return await self._update(FILES, file_path, updates)

    async def delete_file_intelligence(self, file_path: str) -> bool:
        return await self._delete(FILES, file_path)

    async def insert_ai_insight(self, insight: Union[AIInsight, Mapping[str, Any]]) -> None:
        await self._upsert(INSIGHTS, insight)

    async def insert_ai_insights_batch(self, insights: Sequence[Union[AIInsight, Mapping[str, Any]]]) -> int:
        return await self._upsert_many(INSIGHTS, insights)

    async def get_ai_insights(
        self, insight_type: Optional[str] = None, limit: Optional[int] = None
    ) -> list[AIInsight]:
        return await self._list(INSIGHTS, insight_type, limit=limit)

    async def update_ai_insight(self, insight_id: str, updates: Mapping[str, Any]) -> bool:
        return await self._update(INSIGHTS, insight_id, updates)

    async def delete_ai_insight(self, insight_id: str) -> bool:
        return await self._delete(INSIGHTS, insight_id)

    async def count_records(self) -> RelationalStats:
        self._require_ready()
        engine = self._require_engine()
        counts: dict[str, int] = {}
        try:
            async with engine.connect() as conn:
                for field, kind in zip(("concepts", "patterns", "files", "insights"), _KINDS):
                    result = await conn.execute(select(func.count()).select_from(kind.table))
                    counts[field] = int(result.scalar() or 0)
        except SQLAlchemyError as exc:
            raise BackendRequestError(f"Counting records failed: {exc}", backend=_BACKEND) from exc
        return RelationalStats(**counts)

    async def export_all(self) -> RelationalSnapshot:
        concepts = await self._list(CONCEPTS, None)
        patterns = await self._list(PATTERNS, None)
        files = await self._list(FILES, None)
        insights = await self._list(INSIGHTS, None)
        return RelationalSnapshot(
            semantic_concepts=[record.model_dump(mode="json") for record in concepts],
            developer_patterns=[record.model_dump(mode="json") for record in patterns],
            file_intelligence=[record.model_dump(mode="json") for record in files],
            ai_insights=[record.model_dump(mode="json") for record in insights],
            schema_version=await self.get_current_schema_version(),
        )

    async def import_all(self, snapshot: RelationalSnapshot) -> int:
        """Upsert every record of ``snapshot`` in one transaction, keeping its timestamps."""

        self._require_ready()
        engine = self._require_engine()
        groups = (
            (CONCEPTS, snapshot.semantic_concepts),
            (PATTERNS, snapshot.developer_patterns),
            (FILES, snapshot.file_intelligence),
            (INSIGHTS, snapshot.ai_insights),
        )
        total = 0
        try:
            async with engine.begin() as conn:
                for kind, rows in groups:
                    for row in rows:
                        await conn.execute(self._upsert_statement(kind, row, touch=False))
                        total += 1
        except (SQLAlchemyError, ValueError) as exc:
            raise TransactionFailureError(
                f"Relational import rolled back after {total} records: {exc}",
                backend=_BACKEND,
            ) from exc
        _LOGGER.info("Imported %d relational records", total)
        return total

    async def backup_data(self, directory: Union[str, Path], *, backup_id: Optional[str] = None) -> Path:
        """Write a JSON snapshot to ``directory`` and return its path."""

        snapshot = await self.export_all()
        backup_id = backup_id or f"relational-{utcnow():%Y%m%dT%H%M%S%f}"
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        path = target / f"{backup_id}.json"
        path.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
        _LOGGER.info("Relational backup written to %s (%d records)", path, snapshot.record_count)
        return path

    async def restore_data(self, backup: Union[str, Path], directory: Union[str, Path, None] = None) -> int:
        """Load a snapshot written by :meth:`backup_data`, by path or by id inside ``directory``."""

        path = Path(backup)
        if not path.is_file() and directory is not None:
            path = Path(directory) / f"{backup}.json"
        if not path.is_file():
            raise BackupNotFoundError(f"Relational backup {backup} not found", backend=_BACKEND)
        try:
            snapshot = RelationalSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise BackupNotFoundError(f"Relational backup {path} is unreadable: {exc}", backend=_BACKEND) from exc
        return await self.import_all(snapshot)

    def _require_engine(self) -> AsyncEngine:
        if self._engine is None:
            raise NotInitializedError("Relational store not initialized. Call initialize() first.", backend=_BACKEND)
        return self._engine

    def _require_ready(self) -> async_sessionmaker[AsyncSession]:
        if self._state != RelationalStoreState.READY or self._sessions is None:
            raise NotInitializedError("Relational store not initialized. Call initialize() first.", backend=_BACKEND)
        return self._sessions

    @staticmethod
    def _request_error(action: str, kind: _RecordKind, exc: Exception) -> BackendRequestError:
        return BackendRequestError(f"Failed to {action} {kind.label}: {exc}", backend=_BACKEND)

    def _row(self, kind: _RecordKind, record: Union[SQLModel, Mapping[str, Any]], *, touch: bool) -> dict[str, Any]:
        if not isinstance(record, kind.model):
            record = kind.model.model_validate(dict(record))
        row = record.model_dump()
        if touch and kind.touch:
            row[kind.touch] = utcnow()
        return row

    def _upsert_statement(self, kind: _RecordKind, record: Union[SQLModel, Mapping[str, Any]], *, touch: bool = True):
        row = self._row(kind, record, touch=touch)
        stmt = self._insert(kind.table).values(**row)
        mutable = {column: stmt.excluded[column] for column in row if column not in (kind.key, "created_at")}
        return stmt.on_conflict_do_update(index_elements=[kind.key], set_=mutable)

    async def _upsert(self, kind: _RecordKind, record: Union[SQLModel, Mapping[str, Any]]) -> None:
        self._require_ready()
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                await conn.execute(self._upsert_statement(kind, record))
        except ValueError as exc:
            raise StorageValidationError(f"Invalid {kind.label}: {exc}", backend=_BACKEND) from exc
        except SQLAlchemyError as exc:
            raise self._request_error("store", kind, exc) from exc

    async def _upsert_many(self, kind: _RecordKind, records: Iterable[Union[SQLModel, Mapping[str, Any]]]) -> int:
        self._require_ready()
        engine = self._require_engine()
        items = list(records)
        if not items:
            return 0
        try:
            async with engine.begin() as conn:
                for record in items:
                    await conn.execute(self._upsert_statement(kind, record))
        except (SQLAlchemyError, ValueError) as exc:
            raise TransactionFailureError(
                f"Batch insert of {len(items)} {kind.label} records rolled back: {exc}",
                backend=_BACKEND,
            ) from exc
        return len(items)

    async def _list(self, kind: _RecordKind, value: Optional[str], *, limit: Optional[int] = None) -> list[Any]:
        sessions = self._require_ready()
        statement = select(kind.model)
        if value is not None and kind.filter_column is not None:
            statement = statement.where(getattr(kind.model, kind.filter_column) == value)
        statement = statement.order_by(getattr(kind.model, kind.order_by).desc())
        if limit is not None:
            statement = statement.limit(limit)
        try:
            async with sessions() as session:
                result = await session.exec(statement)
                return list(result.all())
        except SQLAlchemyError as exc:
            raise self._request_error("read", kind, exc) from exc

    async def _update(self, kind: _RecordKind, key: str, updates: Mapping[str, Any]) -> bool:
        """Apply only the supplied columns; an empty mapping touches nothing and returns False."""

        self._require_ready()
        engine = self._require_engine()
        if not updates:
            return False
        if kind.key in updates:
            raise StorageValidationError(f"The {kind.label} key '{kind.key}' cannot be updated", backend=_BACKEND)
        if "created_at" in updates:
            raise StorageValidationError(f"The {kind.label} creation time cannot be updated", backend=_BACKEND)
        columns = set(kind.table.columns.keys())
        unknown = sorted(set(updates) - columns)
        if unknown:
            raise StorageValidationError(
                f"Unknown {kind.label} fields: {', '.join(unknown)}",
                backend=_BACKEND,
            )

        values = self._validate_updates(kind, updates)
        if kind.touch and kind.touch not in values:
            values[kind.touch] = utcnow()
        statement = update(kind.table).where(kind.table.c[kind.key] == key).values(**values)
        try:
            async with engine.begin() as conn:
                result = await conn.execute(statement)
        except SQLAlchemyError as exc:
            raise self._request_error("update", kind, exc) from exc
        return result.rowcount > 0

    @staticmethod
    def _validate_updates(kind: _RecordKind, updates: Mapping[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name, value in updates.items():
            annotation = kind.model.model_fields[name].annotation
            try:
                values[name] = TypeAdapter(annotation).validate_python(value)
            except ValidationError as exc:
                raise StorageValidationError(
                    f"Invalid value for {kind.label} field '{name}': {exc.errors()[0]['msg']}",
                    backend=_BACKEND,
                ) from exc
        return values

    async def _delete(self, kind: _RecordKind, key: str) -> bool:
        self._require_ready()
        engine = self._require_engine()
        statement = delete(kind.table).where(kind.table.c[kind.key] == key)
        try:
            async with engine.begin() as conn:
                result = await conn.execute(statement)
        except SQLAlchemyError as exc:
            raise self._request_error("delete", kind, exc) from exc
        return result.rowcount > 0


class SQLiteStore(RelationalStoreClient):
    dialect_name = "sqlite"

    def __init__(self, filename: Union[str, Path], *, pool_size: int = 10, timeout: float = 30.0) -> None:
        super().__init__()
        self.filename = filename
        self.pool_size = pool_size
        self.timeout = timeout

    def _create_engine(self) -> AsyncEngine:
        return create_sqlite_engine(self.filename, pool_size=self.pool_size, timeout=self.timeout)

    def _insert(self, table):
        return sqlite.insert(table)

    async def _prepare(self, conn: AsyncConnection) -> None:
        await apply_sqlite_pragmas(conn)


class PostgresStore(RelationalStoreClient):
    dialect_name = "postgresql"

    def __init__(
        self,
        host: Optional[str] = None,
        port: int = 5432,
        database: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        *,
        ssl: bool = False,
        ssl_mode: Optional[str] = None,
        database_url: Optional[str] = None,
        pool_size: int = 10,
        timeout: float = 30.0,
    ) -> None:
        super().__init__()
        if database_url:
            self.url: URL = make_url(database_url)
        else:
            missing = [name for name, value in (("host", host), ("database", database), ("user", user)) if not value]
            if missing:
                raise StorageValidationError(
                    f"PostgreSQL configuration missing: {', '.join(missing)}",
                    backend=_BACKEND,
                )
            self.url = postgres_url(host=host, port=port, database=database, user=user, password=password)
        if self.url.drivername == "postgresql":
            self.url = self.url.set(drivername="postgresql+asyncpg")
        self.ssl = ssl
        self.ssl_mode = ssl_mode
        self.pool_size = pool_size
        self.timeout = timeout

    def _create_engine(self) -> AsyncEngine:
        return create_postgres_engine(
            self.url,
            pool_size=self.pool_size,
            timeout=self.timeout,
            ssl=self.ssl,
            ssl_mode=self.ssl_mode,
        )

    def _insert(self, table):
        return postgresql.insert(table)
