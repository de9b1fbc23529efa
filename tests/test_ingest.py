"""Tests for docqa/rag/ingest.py"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from docqa.documents import SQLiteDocumentStore
from docqa.errors import EmbeddingFailed, StoreWriteFailed, UnsupportedMediaType
from docqa.rag.chunker import TextChunker
from docqa.rag.ingest import IngestPipeline, Upload
from docqa.rag.lifecycle import LifecycleTracker
from docqa.rag.models import Document, DocumentStatus
from fakes import FakeEmbedder

# 252 characters: three chunks with size 100 and overlap 20
THREE_CHUNK_TEXT = "alpha " * 42


def make_pipeline(embedder, store, document_store=None, **kwargs):
    tracker = LifecycleTracker(document_store)
    pipeline = IngestPipeline(
        embedder,
        store,
        tracker,
        chunker=TextChunker(chunk_size=100, chunk_overlap=20),
        min_chunk_length=kwargs.pop("min_chunk_length", 0),
        **kwargs,
    )
    return pipeline, tracker


async def test_document_fully_indexed(local_store, document_store):
    embedder = FakeEmbedder()
    pipeline, tracker = make_pipeline(embedder, local_store, document_store)

    result = await pipeline.ingest_upload(
        "manual.txt", "text/plain", THREE_CHUNK_TEXT.encode(), document_id="doc1"
    )

    assert result.status == DocumentStatus.INDEXED
    assert result.chunks_created == 3
    assert embedder.calls == 3
    assert await local_store.chunk_count() == 3
    assert tracker.status("doc1") == DocumentStatus.INDEXED

    stored = await document_store.get("doc1")
    assert stored.status == DocumentStatus.INDEXED
    assert stored.content == THREE_CHUNK_TEXT
    assert stored.category == "manual"


async def test_failed_chunk_leaves_nothing_indexed(local_store, document_store):
    pipeline, tracker = make_pipeline(FakeEmbedder(fail_on_call=2), local_store, document_store)

    with pytest.raises(EmbeddingFailed):
        await pipeline.ingest_upload(
            "manual.txt", "text/plain", THREE_CHUNK_TEXT.encode(), document_id="doc1"
        )

    assert tracker.status("doc1") == DocumentStatus.ERROR
    assert await local_store.chunk_count() == 0
    stored = await document_store.get("doc1")
    assert stored.status == DocumentStatus.ERROR
    assert "Embedding request failed" in stored.error


async def test_failed_reingestion_removes_previous_generation(local_store):
    pipeline, tracker = make_pipeline(FakeEmbedder(), local_store)
    await pipeline.ingest_upload("a.txt", "text/plain", THREE_CHUNK_TEXT.encode(), document_id="doc1")

    pipeline.embedder = FakeEmbedder(fail_on_call=3)
    with pytest.raises(EmbeddingFailed):
        await pipeline.ingest_upload("a.txt", "text/plain", THREE_CHUNK_TEXT.encode(), document_id="doc1")

    assert await local_store.chunk_count() == 0
    assert tracker.status("doc1") == DocumentStatus.ERROR


async def test_reingestion_replaces_chunks(local_store):
    pipeline, _ = make_pipeline(FakeEmbedder(), local_store)
    await pipeline.ingest_upload("a.txt", "text/plain", THREE_CHUNK_TEXT.encode(), document_id="doc1")

    result = await pipeline.ingest_upload("a.txt", "text/plain", b"beta " * 10, document_id="doc1")

    assert result.chunks_created == 1
    assert await local_store.chunk_count() == 1


async def test_parallel_embedding_failure_cancels_and_stores_nothing(local_store):
    pipeline, tracker = make_pipeline(
        FakeEmbedder(fail_on_call=2), local_store, embed_concurrency=3
    )

    with pytest.raises(EmbeddingFailed):
        await pipeline.ingest_upload("a.txt", "text/plain", THREE_CHUNK_TEXT.encode(), document_id="doc1")

    assert await local_store.chunk_count() == 0
    assert tracker.status("doc1") == DocumentStatus.ERROR


async def test_parallel_embedding_keeps_chunk_order(local_store):
    class SlowFirstEmbedder(FakeEmbedder):
        async def embed(self, text):
            if text.startswith("first"):
                await asyncio.sleep(0.01)
            return await super().embed(text)

    pipeline, _ = make_pipeline(SlowFirstEmbedder(), local_store, embed_concurrency=4)
    text = "first " + "alpha " * 20 + "beta " * 30

    await pipeline.ingest_upload("a.txt", "text/plain", text.encode(), document_id="doc1")

    results = await local_store.search_similar([0, 0, 0, 0, 1], 10)
    by_index = sorted(results, key=lambda r: r.chunk_index)
    assert by_index[0].content.startswith("first")


async def test_unsupported_media_type_marks_error(local_store, document_store):
    pipeline, tracker = make_pipeline(FakeEmbedder(), local_store, document_store)

    with pytest.raises(UnsupportedMediaType):
        await pipeline.ingest_upload("scan.pdf", "application/pdf", b"%PDF", document_id="doc1")

    assert tracker.status("doc1") == DocumentStatus.ERROR
    assert (await document_store.get("doc1")).status == DocumentStatus.ERROR


async def test_store_failure_marks_error(document_store):
    store = AsyncMock()
    store.upsert_chunks.side_effect = StoreWriteFailed("disk full")
    pipeline, tracker = make_pipeline(FakeEmbedder(), store, document_store)

    with pytest.raises(StoreWriteFailed):
        await pipeline.ingest_upload("a.txt", "text/plain", b"alpha " * 30, document_id="doc1")

    assert tracker.status("doc1") == DocumentStatus.ERROR
    store.remove_document.assert_awaited_once_with("doc1")


async def test_indexed_status_write_failure_marks_error(local_store, temp_db):
    class IndexedWriteFails(SQLiteDocumentStore):
        async def update_status(self, document_id, status, error=None):
            if status == "indexed":
                raise StoreWriteFailed("Failed to update status", detail="database is locked")
            return await super().update_status(document_id, status, error)

    document_store = IndexedWriteFails()
    pipeline, tracker = make_pipeline(FakeEmbedder(), local_store, document_store)

    with pytest.raises(StoreWriteFailed):
        await pipeline.ingest_upload(
            "manual.txt", "text/plain", THREE_CHUNK_TEXT.encode(), document_id="doc1"
        )

    assert tracker.status("doc1") == DocumentStatus.ERROR
    assert (await document_store.get("doc1")).status == DocumentStatus.ERROR
    assert await local_store.chunk_count() == 0


async def test_short_chunks_not_embedded(local_store):
    embedder = FakeEmbedder()
    pipeline, _ = make_pipeline(embedder, local_store, min_chunk_length=50)

    # Second window holds only 20 characters of text
    result = await pipeline.ingest_upload("a.txt", "text/plain", ("x" * 100 + " " * 60).encode())

    assert result.chunks_created == 1
    assert embedder.calls == 1


async def test_empty_document_is_indexed_with_no_chunks(local_store):
    embedder = FakeEmbedder()
    pipeline, tracker = make_pipeline(embedder, local_store)

    result = await pipeline.ingest_upload("empty.txt", "text/plain", b"", document_id="doc1")

    assert result.status == DocumentStatus.INDEXED
    assert result.chunks_created == 0
    assert embedder.calls == 0


async def test_ingest_text_skips_extraction(local_store):
    pipeline, tracker = make_pipeline(FakeEmbedder(), local_store)
    seen = []
    tracker.add_listener(lambda doc: seen.append(doc.status))
    document = Document(id="doc1", name="a.txt", media_type="text/plain", size=10, content="alpha " * 10)

    result = await pipeline.ingest_text(document)

    assert result.status == DocumentStatus.INDEXED
    assert DocumentStatus.EXTRACTING not in seen


async def test_ingest_many_isolates_failures(local_store):
    pipeline, tracker = make_pipeline(FakeEmbedder(), local_store)
    progress = []

    results = await pipeline.ingest_many(
        [
            Upload(name="good.txt", data=b"alpha " * 10),
            Upload(name="bad.pdf", data=b"%PDF", media_type="application/pdf"),
            Upload(name="also-good.md", data=b"beta " * 10),
        ],
        progress_callback=lambda current, total, name: progress.append((current, total, name)),
    )

    assert [r.status for r in results] == [
        DocumentStatus.INDEXED,
        DocumentStatus.ERROR,
        DocumentStatus.INDEXED,
    ]
    assert tracker.status(results[1].document_id) == DocumentStatus.ERROR
    assert pipeline.stats["files_processed"] == 2
    assert pipeline.stats["files_failed"] == 1
    assert await local_store.document_count() == 2
    assert progress[-1] == (3, 3, "also-good.md")


async def test_cancellation_marks_error(local_store):
    started = asyncio.Event()

    class HangingEmbedder(FakeEmbedder):
        async def embed(self, text):
            started.set()
            await asyncio.sleep(60)

    pipeline, tracker = make_pipeline(HangingEmbedder(), local_store)
    task = asyncio.create_task(
        pipeline.ingest_upload("a.txt", "text/plain", b"alpha " * 10, document_id="doc1")
    )
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert tracker.status("doc1") == DocumentStatus.ERROR
    assert await local_store.chunk_count() == 0
