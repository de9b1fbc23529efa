"""Tests for docqa/rag/store_local.py"""
import json

import pytest

from docqa.errors import InvalidVector, StoreReadFailed
from docqa.rag.store_local import LocalVectorStore


async def test_empty_store_returns_nothing(local_store):
    assert await local_store.search_similar([1.0, 0.0], 5) == []
    assert await local_store.chunk_count() == 0
    assert await local_store.document_count() == 0


async def test_identical_vector_ranks_first(local_store):
    await local_store.upsert_chunks(
        "doc1",
        "manual.txt",
        [("first", [1.0, 0.0, 0.0]), ("second", [0.6, 0.8, 0.0]), ("third", [0.0, 0.0, 1.0])],
    )

    results = await local_store.search_similar([0.6, 0.8, 0.0], 3)

    assert results[0].content == "second"
    assert results[0].similarity == pytest.approx(1.0)
    assert results[0].chunk_index == 1
    assert results[0].document_id == "doc1"
    assert results[0].document_name == "manual.txt"
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)


async def test_top_k_caps_results(local_store):
    chunks = [(f"chunk {i}", [1.0, float(i)]) for i in range(10)]
    await local_store.upsert_chunks("doc1", "a.txt", chunks)

    assert len(await local_store.search_similar([1.0, 1.0], 3)) == 3
    assert await local_store.search_similar([1.0, 1.0], 0) == []


async def test_threshold_filters_results(local_store):
    await local_store.upsert_chunks(
        "doc1", "a.txt", [("close", [1.0, 0.1]), ("far", [0.0, 1.0])]
    )

    results = await local_store.search_similar([1.0, 0.0], 5, threshold=0.5)

    assert [r.content for r in results] == ["close"]


async def test_ties_keep_insertion_order(local_store):
    await local_store.upsert_chunks("doc-a", "a.txt", [("from a", [1.0, 1.0])])
    await local_store.upsert_chunks("doc-b", "b.txt", [("from b", [2.0, 2.0])])

    results = await local_store.search_similar([1.0, 1.0], 2)

    assert [r.content for r in results] == ["from a", "from b"]


async def test_upsert_replaces_previous_generation(local_store):
    await local_store.upsert_chunks(
        "doc1", "a.txt", [("old 0", [1.0, 0.0]), ("old 1", [1.0, 0.1]), ("old 2", [1.0, 0.2])]
    )
    await local_store.upsert_chunks("other", "b.txt", [("keep", [0.0, 1.0])])

    stored = await local_store.upsert_chunks("doc1", "a.txt", [("new 0", [1.0, 0.0])])

    assert stored == 1
    assert await local_store.chunk_count() == 2
    contents = [r.content for r in await local_store.search_similar([1.0, 0.0], 10)]
    assert "new 0" in contents and "keep" in contents
    assert not any(c.startswith("old") for c in contents)


async def test_zero_vector_rejected_without_side_effects(local_store, store_path):
    await local_store.upsert_chunks("doc1", "a.txt", [("good", [1.0, 0.0])])
    snapshot = store_path.read_text()

    with pytest.raises(InvalidVector):
        await local_store.upsert_chunks("doc1", "a.txt", [("ok", [1.0, 0.0]), ("bad", [0.0, 0.0])])

    assert store_path.read_text() == snapshot
    assert [r.content for r in await local_store.search_similar([1.0, 0.0], 5)] == ["good"]


async def test_dimension_mismatch_rejected(local_store):
    await local_store.upsert_chunks("doc1", "a.txt", [("two dims", [1.0, 0.0])])

    with pytest.raises(InvalidVector):
        await local_store.upsert_chunks("doc2", "b.txt", [("three dims", [1.0, 0.0, 0.0])])
    with pytest.raises(InvalidVector):
        await local_store.search_similar([1.0, 0.0, 0.0], 5)


async def test_zero_query_rejected(local_store):
    await local_store.upsert_chunks("doc1", "a.txt", [("text", [1.0, 0.0])])

    with pytest.raises(InvalidVector):
        await local_store.search_similar([0.0, 0.0], 5)


async def test_snapshot_survives_restart(local_store, store_path):
    await local_store.upsert_chunks("doc1", "a.txt", [("alpha", [1.0, 0.0]), ("beta", [0.0, 1.0])])

    reopened = LocalVectorStore(store_path)
    await reopened.load()

    assert await reopened.chunk_count() == 2
    results = await reopened.search_similar([0.0, 1.0], 1)
    assert results[0].content == "beta"
    assert results[0].chunk_index == 1


async def test_snapshot_format(local_store, store_path):
    await local_store.upsert_chunks("doc1", "a.txt", [("alpha", [1.0, 0.0])])

    records = json.loads(store_path.read_text())

    assert records == [
        {
            "id": "doc1_0",
            "documentId": "doc1",
            "content": "alpha",
            "embedding": [1.0, 0.0],
            "chunkIndex": 0,
            "documentName": "a.txt",
        }
    ]


async def test_corrupt_snapshot_fails_to_load(store_path):
    store_path.write_text('[{"id": "x"}]')

    with pytest.raises(StoreReadFailed):
        await LocalVectorStore(store_path).load()


async def test_zero_vector_in_snapshot_fails_to_load(store_path):
    store_path.write_text(json.dumps([{
        "id": "d_0", "documentId": "d", "content": "c",
        "embedding": [0.0, 0.0], "chunkIndex": 0, "documentName": "n",
    }]))

    with pytest.raises(StoreReadFailed):
        await LocalVectorStore(store_path).load()


async def test_remove_document_and_clear(local_store):
    await local_store.upsert_chunks("doc1", "a.txt", [("a", [1.0, 0.0]), ("b", [1.0, 1.0])])
    await local_store.upsert_chunks("doc2", "b.txt", [("c", [0.0, 1.0])])

    assert await local_store.document_count() == 2
    assert await local_store.remove_document("doc1") == 2
    assert await local_store.remove_document("doc1") == 0
    assert await local_store.chunk_count() == 1

    await local_store.clear()

    assert await local_store.chunk_count() == 0
    assert local_store.dimension is None
