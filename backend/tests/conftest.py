import json
import re
import zlib
from collections.abc import AsyncGenerator
from typing import Any, Optional

import httpx
import numpy as np
import pytest
import pytest_asyncio

from memoria.core.config import Settings
from memoria.services.embeddings import EmbeddingGenerator
from memoria.services.relational_store import SQLiteStore
from memoria.services.storage_provider import StorageProvider
from memoria.services.vector_store import VectorStoreClient

VECTOR_SIZE = 16
QDRANT_URL = "http://qdrant.test"
COLLECTION = "test_code"


class BagOfTokensModel:
    """Local-tier stand-in: hashed token counts, L2-normalized."""

    name = "bag-of-tokens"

    def __init__(self, dimension: int = VECTOR_SIZE) -> None:
        self.dimension = dimension
        self.calls = 0
        self.loaded = False

    async def load(self) -> None:
        self.loaded = True

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        vector = np.zeros(self.dimension)
        for token in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(token.encode("utf-8")) % self.dimension] += 1.0
        norm = np.linalg.norm(vector)
        if norm:
            vector = vector / norm
        return vector.tolist()


def _ok(result: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"result": result, "status": "ok", "time": 0.0001})


def _not_found(message: str) -> httpx.Response:
    return httpx.Response(404, json={"status": {"error": f"Not found: {message}"}, "time": 0.0})


def _lookup(payload: dict[str, Any], dotted: str) -> Any:
    value: Any = payload
    for part in dotted.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _matches(point: dict[str, Any], qdrant_filter: Optional[dict[str, Any]]) -> bool:
    if not qdrant_filter:
        return True
    payload = point["payload"]

    def condition(item: dict[str, Any]) -> bool:
        return _lookup(payload, item["key"]) == item["match"]["value"]

    must = qdrant_filter.get("must", [])
    should = qdrant_filter.get("should", [])
    must_not = qdrant_filter.get("must_not", [])
    if not all(condition(item) for item in must):
        return False
    if should and not any(condition(item) for item in should):
        return False
    return not any(condition(item) for item in must_not)


def _cosine(a: list[float], b: list[float]) -> float:
    left = np.asarray(a, dtype=float)
    right = np.asarray(b, dtype=float)
    denom = np.linalg.norm(left) * np.linalg.norm(right)
    return float(left @ right / denom) if denom else 0.0


class FakeQdrant:
    """In-process subset of the Qdrant REST API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.upsert_calls = 0
        self.fail_upsert_calls: set[int] = set()
        self.fail_patch = False
        self.unreachable = False
        self.maintenance_page = False

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def points(self, name: str = COLLECTION) -> dict[Any, dict[str, Any]]:
        return self.collections[name]["points"]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.maintenance_page:
            return httpx.Response(200, text="<html>maintenance</html>", headers={"content-type": "text/html"})

        body = json.loads(request.content) if request.content else {}
        parts = [part for part in request.url.path.split("/") if part]
        method = request.method

        if not parts:
            return httpx.Response(200, json={"title": "qdrant - vector search engine", "version": "1.9.0"})
        if parts[0] != "collections" or len(parts) < 2:
            return _not_found(request.url.path)

        name = parts[1]
        if len(parts) == 2:
            return self._collection(method, name, body)

        collection = self.collections.get(name)
        if collection is None:
            return _not_found(f"Collection `{name}` doesn't exist!")
        points = collection["points"]

        if len(parts) == 3 and method == "PUT":
            self.upsert_calls += 1
            if self.upsert_calls in self.fail_upsert_calls:
                return httpx.Response(500, json={"status": {"error": "Service internal error"}})
            for point in body["points"]:
                points[point["id"]] = point
            return _ok({"operation_id": self.upsert_calls, "status": "completed"})

        action = parts[3]
        if method == "GET":
            point_id: Any = int(action) if action.isdigit() else action
            point = points.get(point_id)
            if point is None:
                return _not_found(f"No point with id {action} found")
            return _ok(point)
        if action == "search":
            return self._search(points, body)
        if action == "scroll":
            return self._scroll(points, body)
        if action == "delete":
            if "points" in body:
                for point_id in body["points"]:
                    points.pop(point_id, None)
            else:
                for point_id in [pid for pid, point in points.items() if _matches(point, body.get("filter"))]:
                    points.pop(point_id)
            return _ok({"operation_id": 0, "status": "completed"})
        return _not_found(request.url.path)

    def _collection(self, method: str, name: str, body: dict[str, Any]) -> httpx.Response:
        collection = self.collections.get(name)
        if method == "PUT":
            self.collections[name] = {"config": body["vectors"], "points": {}}
            return _ok(True)
        if collection is None:
            return _not_found(f"Collection `{name}` doesn't exist!")
        if method == "GET":
            count = len(collection["points"])
            return _ok(
                {
                    "status": "green",
                    "points_count": count,
                    "indexed_vectors_count": count,
                    "config": {"params": {"vectors": collection["config"]}},
                }
            )
        if method == "DELETE":
            del self.collections[name]
            return _ok(True)
        if method == "PATCH":
            if self.fail_patch:
                return httpx.Response(500, json={"status": {"error": "optimizer busy"}})
            return _ok(True)
        return _not_found(name)

    def _search(self, points: dict[Any, dict[str, Any]], body: dict[str, Any]) -> httpx.Response:
        threshold = body.get("score_threshold")
        hits = []
        for point in points.values():
            if not _matches(point, body.get("filter")):
                continue
            score = _cosine(body["vector"], point["vector"])
            if threshold is not None and score < threshold:
                continue
            hits.append({"id": point["id"], "version": 0, "score": score, "payload": point["payload"]})
        hits.sort(key=lambda hit: hit["score"], reverse=True)
        return _ok(hits[: body.get("limit", 10)])

    def _scroll(self, points: dict[Any, dict[str, Any]], body: dict[str, Any]) -> httpx.Response:
        ordered = sorted(
            (point for point in points.values() if _matches(point, body.get("filter"))),
            key=lambda point: str(point["id"]),
        )
        start = 0
        if body.get("offset") is not None:
            ids = [point["id"] for point in ordered]
            start = ids.index(body["offset"])
        limit = body.get("limit", 10)
        page = ordered[start : start + limit]
        next_offset = ordered[start + limit]["id"] if start + limit < len(ordered) else None
        with_vector = body.get("with_vector", False)
        rendered = [
            {"id": point["id"], "payload": point["payload"], **({"vector": point["vector"]} if with_vector else {})}
            for point in page
        ]
        return _ok({"points": rendered, "next_page_offset": next_offset})


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        sqlite_filename=str(tmp_path / "memoria.db"),
        backup_dir=str(tmp_path / "backups"),
        qdrant_collection=COLLECTION,
        qdrant_vector_size=VECTOR_SIZE,
        qdrant_retry_attempts=1,
        openai_api_key=None,
    )


@pytest.fixture()
def fake_qdrant() -> FakeQdrant:
    return FakeQdrant()


@pytest.fixture()
def local_model() -> BagOfTokensModel:
    return BagOfTokensModel()


@pytest.fixture()
def embeddings(local_model: BagOfTokensModel) -> EmbeddingGenerator:
    return EmbeddingGenerator(VECTOR_SIZE, local=local_model)


def build_vector_store(fake: FakeQdrant, embeddings: EmbeddingGenerator, **kwargs: Any) -> VectorStoreClient:
    return VectorStoreClient(
        QDRANT_URL,
        collection_name=COLLECTION,
        vector_size=VECTOR_SIZE,
        retry_attempts=1,
        embeddings=embeddings,
        transport=fake.transport(),
        **kwargs,
    )


@pytest_asyncio.fixture()
async def vector_store(fake_qdrant: FakeQdrant, embeddings: EmbeddingGenerator) -> AsyncGenerator[VectorStoreClient, None]:
    store = build_vector_store(fake_qdrant, embeddings)
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()


@pytest_asyncio.fixture()
async def relational_store(tmp_path) -> AsyncGenerator[SQLiteStore, None]:
    store = SQLiteStore(tmp_path / "memoria.db")
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()


@pytest_asyncio.fixture()
async def provider(
    relational_store: SQLiteStore,
    vector_store: VectorStoreClient,
    tmp_path,
) -> StorageProvider:
    return StorageProvider(relational_store, vector_store, backup_dir=tmp_path / "backups")


@pytest.fixture()
def make_vector_store(fake_qdrant: FakeQdrant, embeddings: EmbeddingGenerator):
    def _factory(**kwargs: Any) -> VectorStoreClient:
        return build_vector_store(fake_qdrant, embeddings, **kwargs)

    return _factory
