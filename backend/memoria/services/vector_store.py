"""Vector store client speaking the Qdrant REST protocol.

Classes:
    VectorStoreState: Lifecycle of a client instance.
    VectorStoreClient: Collection management, CRUD and similarity search over httpx.

Functions:
    build_filter(filter): Translate a metadata match dict into a Qdrant filter.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from memoria.core.errors import (
    BackendRequestError,
    ConnectionFailureError,
    DocumentNotFoundError,
    NotInitializedError,
    PartialBatchFailureError,
    StorageError,
    StorageValidationError,
)
from memoria.schemas.storage import BackendHealth, VectorStats
from memoria.schemas.vector import (
    CodeMetadata,
    EmbeddingProgress,
    SearchResult,
    VectorDocument,
    VectorExport,
    VectorExportMetadata,
)
from memoria.services.embeddings import EmbeddingGenerator
from memoria.utils.text import to_point_id
from memoria.utils.time import utcnow

_LOGGER = logging.getLogger(__name__)

BATCH_SIZE = 100
_SCROLL_PAGE = 256
_BACKEND = "vector"

_DISTANCES = {
    "cosine": "Cosine",
    "euclidean": "Euclid",
    "euclid": "Euclid",
    "dot": "Dot",
    "manhattan": "Manhattan",
}

_FILTER_CLAUSES = {"must", "should", "must_not"}

ProgressCallback = Callable[[EmbeddingProgress], None]


class VectorStoreState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


def _metadata_fields() -> dict[str, str]:
    """Map metadata field names and their camelCase aliases onto field names."""

    fields: dict[str, str] = {}
    for name, info in CodeMetadata.model_fields.items():
        fields[name] = name
        fields[info.alias or name] = name
    return fields


def _payload_key(key: str) -> str:
    name = _metadata_fields().get(key)
    if name is None:
        return key
    return CodeMetadata.model_fields[name].alias or name


def build_filter(filter: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    """Pass Qdrant filters through; read anything else as exact metadata matches."""

    if not filter:
        return None
    if _FILTER_CLAUSES.intersection(filter):
        return dict(filter)
    return {
        "must": [
            {"key": f"metadata.{_payload_key(key)}", "match": {"value": value}}
            for key, value in filter.items()
        ]
    }


class VectorStoreClient:
    """Store and search code embeddings in one Qdrant collection.

    Raw text is vectorized with the injected :class:`EmbeddingGenerator`. Caller
    ids that Qdrant cannot use as point ids are mapped to stable UUIDs and the
    original id is kept in the payload under ``doc_id``.
    """

    def __init__(
        self,
        url: str,
        *,
        collection_name: str = "memoria",
        vector_size: int = 1536,
        distance: str = "cosine",
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        embeddings: Optional[EmbeddingGenerator] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        distance_key = distance.lower()
        if distance_key not in _DISTANCES:
            raise StorageValidationError(f"Unsupported distance metric: {distance}", backend=_BACKEND)
        self.url = url.rstrip("/")
        self.collection_name = collection_name
        self.vector_size = vector_size
        self.distance = distance_key
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.embeddings = embeddings if embeddings is not None else EmbeddingGenerator(vector_size)
        self._api_key = api_key
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._state = VectorStoreState.UNINITIALIZED

    @property
    def state(self) -> VectorStoreState:
        return self._state

    def is_ready(self) -> bool:
        return self._state == VectorStoreState.READY

    @property
    def _collection_path(self) -> str:
        return f"/collections/{self.collection_name}"

    async def initialize(self) -> None:
        if self._state == VectorStoreState.READY:
            return
        if self._client is None:
            self._client = self._build_client()
        await self.embeddings.initialize()
        try:
            await self._request("GET", "/")
            await self.ensure_collection()
        except BackendRequestError as exc:
            await self._close_client()
            raise ConnectionFailureError(
                f"Vector store at {self.url} rejected initialization: {exc}",
                backend=_BACKEND,
                status_code=exc.status_code,
            ) from exc
        except StorageError:
            await self._close_client()
            raise
        self._state = VectorStoreState.READY
        _LOGGER.info("Vector store ready (collection=%s, url=%s)", self.collection_name, self.url)

    async def ensure_collection(self, vector_size: Optional[int] = None, distance: Optional[str] = None) -> None:
        existing = await self._request("GET", self._collection_path, allow_404=True)
        if existing is not None:
            _LOGGER.debug("Collection %s already exists", self.collection_name)
            return
        distance_key = (distance or self.distance).lower()
        if distance_key not in _DISTANCES:
            raise StorageValidationError(f"Unsupported distance metric: {distance}", backend=_BACKEND)
        vectors = {"size": vector_size or self.vector_size, "distance": _DISTANCES[distance_key]}
        await self._request("PUT", self._collection_path, json={"vectors": vectors})
        _LOGGER.info("Created collection %s with %s", self.collection_name, vectors)

    async def store_embedding(
        self,
        content: str,
        metadata: CodeMetadata,
        embedding: Optional[Sequence[float]] = None,
    ) -> str:
        self._require_ready()
        vector = self._checked_vector(embedding) if embedding is not None else await self.embeddings.generate(content)
        now = utcnow()
        await self._upsert([self._point(metadata.id, content, vector, metadata.to_payload(), now, now)])
        return metadata.id

    async def store_multiple(
        self,
        contents: Sequence[str],
        metadata_list: Sequence[CodeMetadata],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[str]:
        """Embed and upsert ``contents`` in chunks of :data:`BATCH_SIZE`.

        Chunks are not atomic as a group: when chunk ``k`` fails the earlier
        chunks stay stored and :class:`PartialBatchFailureError` reports how many
        points were committed.
        """

        self._require_ready()
        if len(contents) != len(metadata_list):
            raise StorageValidationError(
                f"contents and metadata_list must have the same length ({len(contents)} != {len(metadata_list)})",
                backend=_BACKEND,
            )

        total = len(contents)
        points: list[dict[str, Any]] = []
        for index, (content, metadata) in enumerate(zip(contents, metadata_list)):
            if on_progress is not None:
                on_progress(EmbeddingProgress(processed=index, total=total, current_file=metadata.file_path))
            vector = await self.embeddings.generate(content)
            now = utcnow()
            points.append(self._point(metadata.id, content, vector, metadata.to_payload(), now, now))

        committed = 0
        for batch_index, start in enumerate(range(0, total, BATCH_SIZE)):
            batch = points[start : start + BATCH_SIZE]
            try:
                await self._upsert(batch)
            except StorageError as exc:
                raise PartialBatchFailureError(
                    f"Vector upsert chunk {batch_index} failed after {committed} points were stored: {exc}",
                    committed=committed,
                    failed_batch=batch_index,
                    backend=_BACKEND,
                    status_code=exc.status_code,
                ) from exc
            committed += len(batch)

        if on_progress is not None:
            on_progress(EmbeddingProgress(processed=total, total=total))
        return [metadata.id for metadata in metadata_list]

    async def search(
        self,
        query: Union[str, Sequence[float]],
        *,
        limit: int = 10,
        threshold: float = 0.7,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> list[SearchResult]:
        self._require_ready()
        vector = await self.embeddings.generate(query) if isinstance(query, str) else self._checked_vector(query)
        body: dict[str, Any] = {
            "vector": vector,
            "limit": limit,
            "score_threshold": threshold,
            "with_payload": True,
            "with_vector": False,
        }
        qdrant_filter = build_filter(filter)
        if qdrant_filter is not None:
            body["filter"] = qdrant_filter

        data = await self._request("POST", f"{self._collection_path}/points/search", json=body)
        results = [
            SearchResult(
                id=self._doc_id(hit),
                content=hit["payload"].get("content", ""),
                metadata=CodeMetadata.model_validate(hit["payload"]["metadata"]),
                score=float(hit["score"]),
            )
            for hit in (data or {}).get("result", [])
            if float(hit["score"]) >= threshold
        ]
        results.sort(key=lambda result: result.score, reverse=True)
        return results[:limit]

    async def update(
        self,
        doc_id: str,
        *,
        content: Optional[str] = None,
        metadata: Optional[Union[CodeMetadata, Mapping[str, Any]]] = None,
        embedding: Optional[Sequence[float]] = None,
    ) -> VectorDocument:
        """Read-modify-write one document; concurrent updates resolve last-writer-wins."""

        self._require_ready()
        existing = await self.get(doc_id)
        if existing is None:
            raise DocumentNotFoundError(f"Vector document {doc_id} not found", backend=_BACKEND, status_code=404)

        merged = self._merge_metadata(existing.metadata, metadata) if metadata else existing.metadata
        new_content = content if content is not None else existing.content
        if embedding is not None:
            vector = self._checked_vector(embedding)
        elif content is not None:
            vector = await self.embeddings.generate(content)
        else:
            vector = existing.embedding

        updated = utcnow()
        await self._upsert([self._point(doc_id, new_content, vector, merged.to_payload(), existing.created, updated)])
        return VectorDocument(
            id=doc_id,
            content=new_content,
            embedding=vector,
            metadata=merged,
            created=existing.created,
            updated=updated,
        )

    async def delete(self, doc_id: str) -> None:
        self._require_ready()
        await self._request(
            "POST",
            f"{self._collection_path}/points/delete",
            json={"points": [to_point_id(doc_id)]},
            params={"wait": "true"},
        )

    async def delete_by_filter(self, filter: Mapping[str, Any]) -> int:
        """Delete every document matching ``filter`` and return how many were removed."""

        self._require_ready()
        qdrant_filter = build_filter(filter)
        if qdrant_filter is None:
            raise StorageValidationError("delete_by_filter requires a non-empty filter", backend=_BACKEND)

        point_ids = [point["id"] for point in await self._scroll_all(qdrant_filter, with_vector=False)]
        for start in range(0, len(point_ids), BATCH_SIZE):
            await self._request(
                "POST",
                f"{self._collection_path}/points/delete",
                json={"points": point_ids[start : start + BATCH_SIZE]},
                params={"wait": "true"},
            )
        return len(point_ids)

    async def get(self, doc_id: str) -> Optional[VectorDocument]:
        self._require_ready()
        data = await self._request("GET", f"{self._collection_path}/points/{to_point_id(doc_id)}", allow_404=True)
        if not data or not data.get("result"):
            return None
        return self._to_document(data["result"])

    async def list_documents(self, filter: Optional[Mapping[str, Any]] = None, limit: int = 100) -> list[VectorDocument]:
        self._require_ready()
        body: dict[str, Any] = {"limit": limit, "with_payload": True, "with_vector": True}
        qdrant_filter = build_filter(filter)
        if qdrant_filter is not None:
            body["filter"] = qdrant_filter
        data = await self._request("POST", f"{self._collection_path}/points/scroll", json=body)
        return [self._to_document(point) for point in (data or {}).get("result", {}).get("points", [])]

    async def stats(self) -> VectorStats:
        self._require_ready()
        data = await self._request("GET", self._collection_path)
        info = (data or {}).get("result", {})
        return VectorStats(
            documents=info.get("points_count") or 0,
            index_size=info.get("disk_data_size") or info.get("indexed_vectors_count") or 0,
            memory_usage=info.get("ram_data_size"),
        )

    async def export_all(self) -> VectorExport:
        self._require_ready()
        documents = [self._to_document(point) for point in await self._scroll_all(None, with_vector=True)]
        return VectorExport(
            documents=documents,
            metadata=VectorExportMetadata(
                collection_name=self.collection_name,
                vector_size=self.vector_size,
                document_count=len(documents),
            ),
        )

    async def import_all(self, export: VectorExport) -> int:
        self._require_ready()
        points = [
            self._point(
                doc.id,
                doc.content,
                self._checked_vector(doc.embedding),
                doc.metadata.to_payload(),
                doc.created,
                doc.updated,
            )
            for doc in export.documents
        ]
        for start in range(0, len(points), BATCH_SIZE):
            await self._upsert(points[start : start + BATCH_SIZE])
        _LOGGER.info("Imported %d vector documents into %s", len(points), self.collection_name)
        return len(points)

    async def delete_collection(self) -> None:
        self._require_ready()
        await self._request("DELETE", self._collection_path)
        self._state = VectorStoreState.UNINITIALIZED
        _LOGGER.info("Deleted collection %s", self.collection_name)

    async def optimize_index(self) -> None:
        """Ask the backend to run its optimizers; failures are logged only."""

        self._require_ready()
        try:
            await self._request("PATCH", self._collection_path, json={"optimizers_config": {}})
        except StorageError as exc:
            _LOGGER.warning("Index optimization for %s failed: %s", self.collection_name, exc)

    async def health_check(self) -> BackendHealth:
        if self._client is None or self._state != VectorStoreState.READY:
            return BackendHealth(healthy=False, message=f"Vector store is {self._state.value}")
        started = time.perf_counter()
        try:
            await self._request("GET", self._collection_path)
        except (StorageError, httpx.HTTPError) as exc:
            return BackendHealth(healthy=False, message=str(exc))
        latency = (time.perf_counter() - started) * 1000.0
        return BackendHealth(healthy=True, message="Vector store reachable", latency=latency)

    async def close(self) -> None:
        await self._close_client()
        self.embeddings.clear_cache()
        self._state = VectorStoreState.CLOSED
        _LOGGER.info("Vector store client closed")

    def _build_client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["api-key"] = self._api_key
        return httpx.AsyncClient(
            base_url=self.url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _require_ready(self) -> None:
        if self._state != VectorStoreState.READY or self._client is None:
            raise NotInitializedError(
                "Vector store not initialized. Call initialize() first.",
                backend=_BACKEND,
            )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, str]] = None,
        allow_404: bool = False,
    ) -> Optional[dict[str, Any]]:
        if self._client is None:
            raise NotInitializedError("Vector store client is closed", backend=_BACKEND)
        client = self._client
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=0.5, max=5),
                reraise=True,
            ):
                with attempt:
                    response = await client.request(method, path, json=json, params=params)
        except httpx.TransportError as exc:
            raise ConnectionFailureError(
                f"Vector store unreachable ({method} {path}): {exc}",
                backend=_BACKEND,
            ) from exc

        if response.status_code == 404 and allow_404:
            return None
        if response.is_error:
            raise BackendRequestError(
                f"Vector store request {method} {path} failed with HTTP {response.status_code}: {response.text}",
                backend=_BACKEND,
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise BackendRequestError(
                f"Vector store returned a non-JSON body for {method} {path}: {exc}",
                backend=_BACKEND,
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise BackendRequestError(
                f"Vector store returned an unexpected body for {method} {path}",
                backend=_BACKEND,
                status_code=response.status_code,
            )
        return data

    async def _upsert(self, points: list[dict[str, Any]]) -> None:
        await self._request(
            "PUT",
            f"{self._collection_path}/points",
            json={"points": points},
            params={"wait": "true"},
        )

    async def _scroll_all(self, qdrant_filter: Optional[dict[str, Any]], *, with_vector: bool) -> list[dict[str, Any]]:
        points: list[dict[str, Any]] = []
        offset: Any = None
        while True:
            body: dict[str, Any] = {
                "limit": _SCROLL_PAGE,
                "with_payload": True,
                "with_vector": with_vector,
            }
            if qdrant_filter is not None:
                body["filter"] = qdrant_filter
            if offset is not None:
                body["offset"] = offset
            data = await self._request("POST", f"{self._collection_path}/points/scroll", json=body)
            result = (data or {}).get("result", {})
            points.extend(result.get("points", []))
            offset = result.get("next_page_offset")
            if offset is None:
                return points

    def _checked_vector(self, vector: Sequence[float]) -> list[float]:
        if len(vector) != self.vector_size:
            raise StorageValidationError(
                f"Embedding has {len(vector)} dimensions, collection expects {self.vector_size}",
                backend=_BACKEND,
            )
        return [float(value) for value in vector]

    @staticmethod
    def _point(
        doc_id: str,
        content: str,
        vector: list[float],
        metadata: dict[str, Any],
        created: datetime,
        updated: datetime,
    ) -> dict[str, Any]:
        return {
            "id": to_point_id(doc_id),
            "vector": vector,
            "payload": {
                "doc_id": doc_id,
                "content": content,
                "metadata": metadata,
                "created": created.isoformat(),
                "updated": updated.isoformat(),
            },
        }

    @staticmethod
    def _doc_id(point: Mapping[str, Any]) -> str:
        payload = point.get("payload") or {}
        return str(payload.get("doc_id") or point["id"])

    def _to_document(self, point: Mapping[str, Any]) -> VectorDocument:
        payload = point.get("payload") or {}
        vector = point.get("vector") or []
        if isinstance(vector, Mapping):
            # named vectors; this client only writes the default one
            vector = next(iter(vector.values()), [])
        now = utcnow()
        return VectorDocument(
            id=self._doc_id(point),
            content=payload.get("content", ""),
            embedding=list(vector),
            metadata=CodeMetadata.model_validate(payload.get("metadata") or {}),
            created=payload.get("created") or now,
            updated=payload.get("updated") or now,
        )

    @staticmethod
    def _merge_metadata(
        current: CodeMetadata,
        updates: Union[CodeMetadata, Mapping[str, Any]],
    ) -> CodeMetadata:
        if isinstance(updates, CodeMetadata):
            changes = updates.model_dump(exclude_unset=True)
        else:
            fields = _metadata_fields()
            changes = {}
            for key, value in updates.items():
                if key not in fields:
                    raise StorageValidationError(f"Unknown metadata field: {key}", backend=_BACKEND)
                changes[fields[key]] = value
        return CodeMetadata.model_validate({**current.model_dump(), **changes})
