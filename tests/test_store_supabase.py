"""Tests for docqa/rag/store_supabase.py and the Supabase document store."""
import pytest

from docqa.documents import SupabaseDocumentStore
from docqa.errors import InvalidConfiguration, InvalidVector, StoreReadFailed, StoreWriteFailed
from docqa.rag.models import Document, DocumentStatus
from docqa.rag.store_supabase import SupabaseVectorStore, create_supabase_client
from fakes import FakeSupabase


@pytest.fixture
def client():
    return FakeSupabase()


@pytest.fixture
def store(client):
    return SupabaseVectorStore(client, owner_id="user-1", default_threshold=0.3)


async def test_upsert_replaces_document_rows(client, store):
    await store.upsert_chunks("doc1", "a.txt", [("old 0", [1.0, 0.0]), ("old 1", [0.0, 1.0])])
    await store.upsert_chunks("doc2", "b.txt", [("other", [1.0, 1.0])])

    stored = await store.upsert_chunks("doc1", "a.txt", [("new 0", [1.0, 0.0])])

    rows = client.get_table("document_chunks").rows
    assert stored == 1
    assert sorted(r["content"] for r in rows) == ["new 0", "other"]
    new_row = next(r for r in rows if r["document_id"] == "doc1")
    assert new_row["chunk_index"] == 0
    assert new_row["embedding"] == [1.0, 0.0]


async def test_upsert_rejects_zero_vector_before_writing(client, store):
    await store.upsert_chunks("doc1", "a.txt", [("keep", [1.0, 0.0])])

    with pytest.raises(InvalidVector):
        await store.upsert_chunks("doc1", "a.txt", [("bad", [0.0, 0.0])])

    assert [r["content"] for r in client.get_table("document_chunks").rows] == ["keep"]


async def test_upsert_failure_raises_store_write_failed(client, store):
    client.get_table("document_chunks").fail = True

    with pytest.raises(StoreWriteFailed) as exc_info:
        await store.upsert_chunks("doc1", "a.txt", [("text", [1.0, 0.0])])

    assert "database unavailable" in str(exc_info.value)


async def test_search_calls_rpc_with_owner_and_threshold(client, store):
    client.rpc_rows = [
        {"content": "best", "document_name": "a.txt", "similarity": 0.92},
        {"content": "good", "document_name": "b.txt", "similarity": 0.71,
         "document_id": "doc2", "chunk_index": 3},
    ]

    results = await store.search_similar([0.1, 0.2], 5)

    name, params = client.rpc_calls[0]
    assert name == "search_documents"
    assert params == {
        "query_embedding": [0.1, 0.2],
        "match_threshold": 0.3,
        "match_count": 5,
        "filter_user_id": "user-1",
    }
    assert [r.content for r in results] == ["best", "good"]
    assert results[1].chunk_index == 3
    assert results[1].document_id == "doc2"


async def test_search_explicit_arguments_override_defaults(client, store):
    await store.search_similar([1.0], 2, threshold=0.8, owner_id="user-2")

    _, params = client.rpc_calls[0]
    assert params["match_threshold"] == 0.8
    assert params["filter_user_id"] == "user-2"
    assert params["match_count"] == 2


async def test_search_caps_rows_to_top_k(client, store):
    client.rpc_rows = [
        {"content": f"row {i}", "document_name": "a.txt", "similarity": 0.9 - i / 100}
        for i in range(6)
    ]

    assert len(await store.search_similar([1.0], 2)) == 2


async def test_search_failure_raises_store_read_failed(client, store):
    client.rpc_fail = True

    with pytest.raises(StoreReadFailed):
        await store.search_similar([1.0], 5)


async def test_malformed_rows_raise_store_read_failed(client, store):
    client.rpc_rows = [{"content": "no name or score"}]

    with pytest.raises(StoreReadFailed):
        await store.search_similar([1.0], 5)


async def test_counts_remove_and_clear(client, store):
    await store.upsert_chunks("doc1", "a.txt", [("a", [1.0]), ("b", [2.0])])
    await store.upsert_chunks("doc2", "b.txt", [("c", [3.0])])

    assert await store.chunk_count() == 3
    assert await store.document_count() == 2
    assert await store.remove_document("doc1") == 2

    await store.clear()

    assert await store.chunk_count() == 0


async def test_missing_credentials_rejected():
    with pytest.raises(InvalidConfiguration):
        await create_supabase_client(url="", key="")


class TestSupabaseDocumentStore:
    async def test_save_get_and_list(self, client):
        documents = SupabaseDocumentStore(client)
        document = Document(id="doc1", name="a.txt", media_type="text/plain", size=3,
                            content="a\x00b", owner_id="user-1")

        await documents.save(document)
        loaded = await documents.get("doc1")

        assert loaded.content == "ab"
        assert loaded.status == DocumentStatus.UPLOADING
        assert [d.id for d in await documents.list("user-1")] == ["doc1"]
        assert await documents.list("someone-else") == []

    async def test_status_update_is_idempotent(self, client):
        documents = SupabaseDocumentStore(client)
        await documents.save(Document(id="doc1", name="a.txt", media_type="text/plain", size=1))

        assert await documents.update_status("doc1", "indexed") is True
        assert await documents.update_status("doc1", "indexed") is False
        assert client.get_table("documents").rows[0]["status"] == "indexed"

    async def test_failure_raises_store_errors(self, client):
        documents = SupabaseDocumentStore(client)
        client.get_table("documents").fail = True

        with pytest.raises(StoreWriteFailed):
            await documents.update_status("doc1", "error")
        with pytest.raises(StoreReadFailed):
            await documents.list()
