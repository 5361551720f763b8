"""Operational endpoints over the storage provider.

Endpoints:
    health(provider): Per-backend liveness; answers 503 when either backend is down.
    stats(provider): Record counts and vector index sizes.
    create_backup(provider): Snapshot both backends into a new backup directory.
    restore_backup(backup_id, provider): Load a previously created backup.

Helpers:
    get_storage_provider(request): Dependency returning the provider built during startup.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from memoria.core.errors import BackupNotFoundError, NotInitializedError, StorageError
from memoria.schemas import BackupManifest, RestoreSummary, StorageHealth, StorageStats
from memoria.services.storage_provider import StorageProvider

router = APIRouter(tags=["storage"])


def get_storage_provider(request: Request) -> StorageProvider:
    provider = getattr(request.app.state, "storage", None)
    if provider is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage is not initialized")
    return provider


@router.get("/health", response_model=StorageHealth)
async def health(
    response: Response,
    provider: StorageProvider = Depends(get_storage_provider),
) -> StorageHealth:
    result = await provider.health_check()
    if not result.overall:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result


@router.get("/stats", response_model=StorageStats)
async def stats(provider: StorageProvider = Depends(get_storage_provider)) -> StorageStats:
    try:
        return await provider.get_stats()
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc


@router.post("/backups", response_model=BackupManifest, status_code=status.HTTP_201_CREATED)
async def create_backup(provider: StorageProvider = Depends(get_storage_provider)) -> BackupManifest:
    try:
        return await provider.create_backup()
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc


@router.post("/backups/{backup_id}/restore", response_model=RestoreSummary)
async def restore_backup(
    backup_id: str,
    provider: StorageProvider = Depends(get_storage_provider),
) -> RestoreSummary:
    try:
        return await provider.restore_backup(backup_id)
    except BackupNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
