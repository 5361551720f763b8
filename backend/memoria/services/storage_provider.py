"""Unified facade over one relational store and one vector store.

Classes:
    StorageProvider: Lifecycle, health, statistics, maintenance and backup/restore across both backends.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from memoria.core.errors import BackupNotFoundError
from memoria.schemas.storage import BackupManifest, RestoreSummary, StorageHealth, StorageStats
from memoria.schemas.vector import VectorExport
from memoria.services.relational_store import RelationalStoreClient
from memoria.services.vector_store import VectorStoreClient
from memoria.utils.time import utcnow

_LOGGER = logging.getLogger(__name__)

_MANIFEST = "manifest.json"
_RELATIONAL_BACKUP_ID = "relational"
_VECTOR_BACKUP = "vector.json"


class StorageProvider:
    """Compose the two backends behind a single lifecycle.

    Backups are directories under ``backup_dir`` named by backup id, each holding
    the relational snapshot, the vector export and a manifest.
    """

    def __init__(
        self,
        relational: RelationalStoreClient,
        vector: VectorStoreClient,
        *,
        backup_dir: Union[str, Path] = "./data/backups",
    ) -> None:
        self.relational = relational
        self.vector = vector
        self.backup_dir = Path(backup_dir)

    def is_ready(self) -> bool:
        return self.relational.is_ready() and self.vector.is_ready()

    async def initialize(self) -> None:
        await self.relational.initialize()
        try:
            await self.vector.initialize()
        except Exception:
            await self.relational.close()
            raise
        _LOGGER.info("Storage provider initialized")

    async def close(self) -> None:
        await self.vector.close()
        await self.relational.close()
        _LOGGER.info("Storage provider closed")

    async def health_check(self) -> StorageHealth:
        relational, vector = await asyncio.gather(self.relational.health_check(), self.vector.health_check())
        return StorageHealth(relational=relational, vector=vector, overall=relational.healthy and vector.healthy)

    async def get_stats(self) -> StorageStats:
        relational = await self.relational.count_records()
        vector = await self.vector.stats()
        return StorageStats(relational=relational, vector=vector, last_updated=utcnow())

    async def run_maintenance(self) -> None:
        version = await self.relational.run_migrations()
        await self.vector.optimize_index()
        _LOGGER.info("Maintenance complete (schema version %d)", version)

    async def create_backup(self) -> BackupManifest:
        created_at = utcnow()
        backup_id = f"backup-{created_at:%Y%m%dT%H%M%S}-{secrets.token_hex(3)}"
        target = self.backup_dir / backup_id
        target.mkdir(parents=True, exist_ok=True)

        relational_path = await self.relational.backup_data(target, backup_id=_RELATIONAL_BACKUP_ID)
        relational_records = await self.relational.count_records()
        export = await self.vector.export_all()
        vector_path = target / _VECTOR_BACKUP
        vector_path.write_text(export.model_dump_json(), encoding="utf-8")

        manifest = BackupManifest(
            backup_id=backup_id,
            relational_backup=str(relational_path),
            vector_backup=str(vector_path),
            relational_records=sum(relational_records.model_dump().values()),
            vector_documents=len(export.documents),
            created_at=created_at,
        )
        (target / _MANIFEST).write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
        _LOGGER.info(
            "Backup %s created (%d relational records, %d vector documents)",
            backup_id,
            manifest.relational_records,
            manifest.vector_documents,
        )
        return manifest

    async def restore_backup(self, backup_id: str) -> RestoreSummary:
        target = self.backup_dir / backup_id
        manifest_path = target / _MANIFEST
        vector_path = target / _VECTOR_BACKUP
        if not manifest_path.is_file() or not vector_path.is_file():
            raise BackupNotFoundError(f"Backup {backup_id} not found in {self.backup_dir}")
        try:
            export = VectorExport.model_validate_json(vector_path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise BackupNotFoundError(f"Backup {backup_id} has an unreadable vector export: {exc}") from exc

        relational_records = await self.relational.restore_data(_RELATIONAL_BACKUP_ID, directory=target)
        vector_documents = await self.vector.import_all(export)
        _LOGGER.info("Backup %s restored", backup_id)
        return RestoreSummary(relational_records=relational_records, vector_documents=vector_documents)

    async def migrate_from(self, source: "StorageProvider") -> RestoreSummary:
        """Copy every record and document of ``source`` into this provider's backends."""

        snapshot = await source.relational.export_all()
        export = await source.vector.export_all()
        relational_records = await self.relational.import_all(snapshot)
        vector_documents = await self.vector.import_all(export)
        _LOGGER.info(
            "Migrated %d relational records and %d vector documents",
            relational_records,
            vector_documents,
        )
        return RestoreSummary(relational_records=relational_records, vector_documents=vector_documents)
