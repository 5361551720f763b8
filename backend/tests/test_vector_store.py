from uuid import UUID

import pytest

from memoria.core.errors import (
    BackendRequestError,
    ConnectionFailureError,
    DocumentNotFoundError,
    NotInitializedError,
    PartialBatchFailureError,
    StorageValidationError,
)
from memoria.schemas import CodeMetadata, EmbeddingProgress
from memoria.services.vector_store import BATCH_SIZE, VectorStoreState, build_filter
from memoria.utils.text import to_point_id

from conftest import COLLECTION, VECTOR_SIZE


def _metadata(doc_id: str, **overrides) -> CodeMetadata:
    values = dict(id=doc_id, file_path=f"src/{doc_id}.py", language="python", line_count=3)
    values.update(overrides)
    return CodeMetadata(**values)


def test_point_ids_are_stable_and_backend_compatible():
    assert to_point_id("42") == 42
    assert isinstance(to_point_id("042"), str)
    uuid_value = "2f1b9a0e-8c5d-4f4e-9a55-0c3f6d6a7e11"
    assert to_point_id(uuid_value) == uuid_value
    mapped = to_point_id("func1")
    assert UUID(mapped)
    assert to_point_id("func1") == mapped


def test_point_ids_stay_within_unsigned_64_bits():
    largest = str(2**64 - 1)
    assert to_point_id(largest) == 2**64 - 1

    overflow = to_point_id(str(2**64))
    assert isinstance(overflow, str)
    assert UUID(overflow)
    assert to_point_id(str(2**64)) == overflow


def test_build_filter_translates_metadata_matches():
    assert build_filter(None) is None
    assert build_filter({"language": "python", "file_path": "a.py"}) == {
        "must": [
            {"key": "metadata.language", "match": {"value": "python"}},
            {"key": "metadata.filePath", "match": {"value": "a.py"}},
        ]
    }
    raw = {"must_not": [{"key": "metadata.language", "match": {"value": "go"}}]}
    assert build_filter(raw) == raw


@pytest.mark.asyncio
async def test_initialize_creates_collection_once(fake_qdrant, make_vector_store):
    store = make_vector_store()
    await store.initialize()

    assert store.state == VectorStoreState.READY
    assert fake_qdrant.collections[COLLECTION]["config"] == {"size": VECTOR_SIZE, "distance": "Cosine"}

    await store.close()
    puts_before = sum(1 for r in fake_qdrant.requests if r.method == "PUT" and r.url.path.endswith(COLLECTION))
    again = make_vector_store()
    await again.initialize()
    puts_after = sum(1 for r in fake_qdrant.requests if r.method == "PUT" and r.url.path.endswith(COLLECTION))
    assert puts_after == puts_before
    await again.close()


@pytest.mark.asyncio
async def test_operations_require_initialization(make_vector_store):
    store = make_vector_store()
    with pytest.raises(NotInitializedError):
        await store.store_embedding("x = 1", _metadata("a"))
    with pytest.raises(NotInitializedError):
        await store.search("x")


@pytest.mark.asyncio
async def test_unreachable_backend_fails_initialization(fake_qdrant, make_vector_store):
    fake_qdrant.unreachable = True
    store = make_vector_store()

    with pytest.raises(ConnectionFailureError):
        await store.initialize()
    assert store.state == VectorStoreState.UNINITIALIZED


@pytest.mark.asyncio
async def test_api_key_header_is_sent(fake_qdrant, make_vector_store):
    store = make_vector_store(api_key="secret-key")
    await store.initialize()

    assert all(request.headers.get("api-key") == "secret-key" for request in fake_qdrant.requests)
    await store.close()


@pytest.mark.asyncio
async def test_store_and_get_round_trip(vector_store, embeddings):
    content = "def parse(tokens):\n    return tokens"
    metadata = _metadata("func1", function_name="parse", complexity=2.5)

    doc_id = await vector_store.store_embedding(content, metadata)
    document = await vector_store.get(doc_id)

    assert doc_id == "func1"
    assert document is not None
    assert document.id == "func1"
    assert document.content == content
    assert document.metadata.function_name == "parse"
    assert document.metadata.complexity == pytest.approx(2.5)
    assert len(document.embedding) == VECTOR_SIZE
    assert document.embedding == pytest.approx(await embeddings.generate(content))


@pytest.mark.asyncio
async def test_payload_uses_camel_case_metadata(fake_qdrant, vector_store):
    await vector_store.store_embedding("x = 1", _metadata("m1", class_name="Thing"))

    payload = fake_qdrant.points()[to_point_id("m1")]["payload"]
    assert payload["doc_id"] == "m1"
    assert payload["metadata"]["filePath"] == "src/m1.py"
    assert payload["metadata"]["className"] == "Thing"
    assert {"content", "created", "updated"} <= set(payload)


@pytest.mark.asyncio
async def test_get_missing_document_returns_none(vector_store):
    assert await vector_store.get("does-not-exist") is None


@pytest.mark.asyncio
async def test_store_with_explicit_embedding_checks_dimension(vector_store):
    with pytest.raises(StorageValidationError):
        await vector_store.store_embedding("x", _metadata("bad"), embedding=[0.1] * (VECTOR_SIZE + 1))


@pytest.mark.asyncio
async def test_search_orders_by_score_and_respects_threshold(vector_store):
    base = "def calculate_total(items): return sum(item.price for item in items)"
    similar = "def calculate_sum(items): return sum(item.price for item in items)"
    different = "class UserRepository: def find_user(self, user_id): return self.db.get(user_id)"
    await vector_store.store_multiple(
        [base, similar, different],
        [_metadata("func1"), _metadata("func2"), _metadata("class1")],
    )

    results = await vector_store.search(base, limit=3, threshold=0.1)

    scores = [result.score for result in results]
    assert scores == sorted(scores, reverse=True)
    assert all(score >= 0.1 for score in scores)
    ids = [result.id for result in results]
    assert ids[0] == "func1"
    assert ids == ["func1", "func2", "class1"]
    assert results[1].score > results[2].score
    assert results[0].score == pytest.approx(1.0)

    strict = await vector_store.search(base, threshold=0.99)
    assert strict[0].id == "func1"
    assert all(result.score >= 0.99 for result in strict)
    assert "class1" not in [result.id for result in strict]


@pytest.mark.asyncio
async def test_search_on_empty_collection_returns_nothing(vector_store):
    assert await vector_store.search("anything", threshold=0.99) == []


@pytest.mark.asyncio
async def test_search_accepts_vector_and_filter(vector_store):
    await vector_store.store_embedding("fn main() {}", _metadata("r1", language="rust"))
    await vector_store.store_embedding("def main(): pass", _metadata("p1", language="python"))
    query = (await vector_store.get("r1")).embedding

    results = await vector_store.search(query, threshold=-1.0, filter={"language": "python"})

    assert [result.id for result in results] == ["p1"]


@pytest.mark.asyncio
async def test_store_multiple_reports_progress(vector_store):
    events: list[EmbeddingProgress] = []

    ids = await vector_store.store_multiple(
        ["a = 1", "b = 2"],
        [_metadata("a"), _metadata("b")],
        on_progress=events.append,
    )

    assert ids == ["a", "b"]
    assert [(event.processed, event.total) for event in events] == [(0, 2), (1, 2), (2, 2)]
    assert events[0].current_file == "src/a.py"


@pytest.mark.asyncio
async def test_store_multiple_rejects_length_mismatch_before_io(fake_qdrant, vector_store):
    requests_before = len(fake_qdrant.requests)

    with pytest.raises(StorageValidationError):
        await vector_store.store_multiple(["a", "b"], [_metadata("a")])
    assert len(fake_qdrant.requests) == requests_before


@pytest.mark.asyncio
async def test_store_multiple_partial_failure_keeps_earlier_chunks(fake_qdrant, vector_store):
    total = BATCH_SIZE * 2 + 50
    contents = [f"value_{index} = {index}" for index in range(total)]
    metadata = [_metadata(f"doc{index}") for index in range(total)]
    fake_qdrant.upsert_calls = 0
    fake_qdrant.fail_upsert_calls = {2}

    with pytest.raises(PartialBatchFailureError) as exc_info:
        await vector_store.store_multiple(contents, metadata)

    assert exc_info.value.committed == BATCH_SIZE
    assert exc_info.value.failed_batch == 1
    assert exc_info.value.status_code == 500
    assert len(fake_qdrant.points()) == BATCH_SIZE
    assert fake_qdrant.upsert_calls == 2
    assert await vector_store.get("doc0") is not None
    assert await vector_store.get(f"doc{BATCH_SIZE}") is None


@pytest.mark.asyncio
async def test_update_merges_metadata_and_reembeds_content(vector_store, embeddings):
    await vector_store.store_embedding("old body", _metadata("u1", complexity=1.0))
    before = await vector_store.get("u1")

    updated = await vector_store.update("u1", content="new body entirely", metadata={"complexity": 4.0})
    stored = await vector_store.get("u1")

    assert updated.content == stored.content == "new body entirely"
    assert stored.metadata.complexity == pytest.approx(4.0)
    assert stored.metadata.file_path == "src/u1.py"
    assert stored.embedding == pytest.approx(await embeddings.generate("new body entirely"))
    assert stored.created == before.created
    assert stored.updated >= before.updated


@pytest.mark.asyncio
async def test_update_metadata_only_keeps_embedding(vector_store):
    await vector_store.store_embedding("keep me", _metadata("u2"))
    before = await vector_store.get("u2")

    await vector_store.update("u2", metadata={"functionName": "renamed"})
    after = await vector_store.get("u2")

    assert after.metadata.function_name == "renamed"
    assert after.embedding == pytest.approx(before.embedding)


@pytest.mark.asyncio
async def test_update_rejects_unknown_metadata_and_missing_documents(vector_store):
    await vector_store.store_embedding("x", _metadata("u3"))

    with pytest.raises(StorageValidationError):
        await vector_store.update("u3", metadata={"colour": "blue"})
    with pytest.raises(DocumentNotFoundError):
        await vector_store.update("ghost", content="boo")


@pytest.mark.asyncio
async def test_delete_and_delete_by_filter(vector_store):
    await vector_store.store_multiple(
        ["a", "b", "c", "d"],
        [
            _metadata("a", language="go"),
            _metadata("b", language="go"),
            _metadata("c", language="python"),
            _metadata("d", language="python"),
        ],
    )

    await vector_store.delete("d")
    removed = await vector_store.delete_by_filter({"language": "go"})

    assert removed == 2
    remaining = await vector_store.list_documents()
    assert [document.id for document in remaining] == ["c"]


@pytest.mark.asyncio
async def test_stats_export_and_import(fake_qdrant, vector_store, make_vector_store):
    await vector_store.store_multiple(["one", "two", "three"], [_metadata("1"), _metadata("2"), _metadata("3")])

    stats = await vector_store.stats()
    export = await vector_store.export_all()

    assert stats.documents == 3
    assert export.metadata.document_count == 3
    assert export.metadata.collection_name == COLLECTION
    assert sorted(document.id for document in export.documents) == ["1", "2", "3"]

    await vector_store.delete_collection()
    assert vector_store.state == VectorStoreState.UNINITIALIZED
    with pytest.raises(NotInitializedError):
        await vector_store.get("1")

    await vector_store.initialize()
    assert await vector_store.import_all(export) == 3
    restored = await vector_store.get("2")
    original = next(document for document in export.documents if document.id == "2")
    assert restored.content == "two"
    assert restored.created == original.created


@pytest.mark.asyncio
async def test_optimize_index_failure_is_not_raised(fake_qdrant, vector_store):
    fake_qdrant.fail_patch = True

    await vector_store.optimize_index()

    assert any(request.method == "PATCH" for request in fake_qdrant.requests)


@pytest.mark.asyncio
async def test_health_check_reports_state(fake_qdrant, vector_store):
    healthy = await vector_store.health_check()
    assert healthy.healthy is True
    assert healthy.latency is not None

    fake_qdrant.unreachable = True
    unhealthy = await vector_store.health_check()
    assert unhealthy.healthy is False
    assert unhealthy.message


@pytest.mark.asyncio
async def test_health_check_reports_non_json_responses(fake_qdrant, vector_store):
    fake_qdrant.maintenance_page = True

    health = await vector_store.health_check()

    assert health.healthy is False
    assert "non-JSON" in health.message


@pytest.mark.asyncio
async def test_non_json_body_raises_backend_error(fake_qdrant, vector_store):
    fake_qdrant.maintenance_page = True

    with pytest.raises(BackendRequestError):
        await vector_store.stats()
