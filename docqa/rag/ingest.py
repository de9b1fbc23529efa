"""Ingest pipeline for indexing uploaded documents.

Orchestrates:
- Text extraction
- Text chunking and short-chunk filtering
- Embedding generation
- Vector storage
- Lifecycle status transitions

A document is either fully indexed or not indexed at all: every chunk must be
embedded before anything is written to the vector store, and any failure
leaves the document in the error status with none of its chunks stored.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from docqa import config
from docqa.rag.chunker import TextChunker, drop_short_chunks
from docqa.rag.embeddings import EmbeddingProvider
from docqa.rag.extract import categorize_document, extract_text, guess_media_type
from docqa.rag.lifecycle import LifecycleTracker
from docqa.rag.models import Document, DocumentStatus
from docqa.rag.store import VectorStore

logger = structlog.get_logger()


@dataclass
class Upload:
    """Raw bytes of a file to ingest."""

    name: str
    data: bytes
    media_type: Optional[str] = None
    owner_id: Optional[str] = None
    document_id: Optional[str] = None


@dataclass
class IngestResult:
    document_id: str
    status: DocumentStatus
    chunks_created: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "status": self.status.value,
            "chunks_created": self.chunks_created,
            "error": self.error,
        }


class IngestPipeline:
    """Pipeline for ingesting documents into the RAG system."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        tracker: LifecycleTracker,
        chunker: Optional[TextChunker] = None,
        min_chunk_length: int = None,
        embed_concurrency: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Provider used for chunk embeddings
            vector_store: Store receiving each document's chunks
            tracker: Lifecycle tracker owning document status
            chunker: Text chunker (default from config)
            min_chunk_length: Chunks shorter than this are not embedded; 0 keeps all
            embed_concurrency: Parallel embedding calls per document; 1 is sequential
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.tracker = tracker
        self.chunker = chunker or TextChunker()
        self.min_chunk_length = (
            config.MIN_CHUNK_LENGTH if min_chunk_length is None else min_chunk_length
        )
        self.embed_concurrency = max(1, embed_concurrency or config.EMBED_CONCURRENCY)

        self.stats = self._empty_stats()

        logger.info(
            "ingest_pipeline_initialized",
            embedding_model=getattr(embedder, "model", None),
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            min_chunk_length=self.min_chunk_length,
            embed_concurrency=self.embed_concurrency,
        )

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "files_processed": 0,
            "files_failed": 0,
            "chunks_created": 0,
            "embeddings_generated": 0,
        }

    async def generate_embeddings(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed every text, in order, or fail as a whole.

        With embed_concurrency > 1 calls run in parallel behind a semaphore;
        the first failure cancels whatever is still pending.
        """
        if not texts:
            return []

        if self.embed_concurrency == 1:
            embeddings = await self.embedder.embed_all(texts)
        else:
            semaphore = asyncio.Semaphore(self.embed_concurrency)

            async def embed_one(text: str) -> List[float]:
                async with semaphore:
                    return await self.embedder.embed(text)

            tasks = [asyncio.create_task(embed_one(text)) for text in texts]
            try:
                embeddings = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        self.stats["embeddings_generated"] += len(embeddings)
        return list(embeddings)

    async def ingest_upload(
        self,
        name: str,
        media_type: Optional[str],
        data: bytes,
        owner_id: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> IngestResult:
        """Ingest an uploaded file.

        Raises:
            UnsupportedMediaType: If no text can be extracted from this type
            EmbeddingUnavailable, EmbeddingFailed: If any chunk cannot be embedded
            StoreWriteFailed: If the chunks cannot be stored
        """
        media_type = guess_media_type(name, media_type)
        document = Document(
            id=document_id or Document.new_id(),
            name=name,
            media_type=media_type,
            size=len(data),
            owner_id=owner_id,
            category=categorize_document(name),
        )

        async def extract() -> str:
            return extract_text(data, media_type, name=name).text

        return await self._run(document, extract)

    async def ingest_text(self, document: Document) -> IngestResult:
        """Ingest a document whose text is already known (document.content)."""
        return await self._run(document, None)

    async def _run(
        self,
        document: Document,
        extract: Optional[Callable[[], Any]],
    ) -> IngestResult:
        logger.info("ingesting_document", document_id=document.id, name=document.name)

        try:
            await self.tracker.begin(document)
            if extract is not None:
                await self.tracker.advance(document.id, DocumentStatus.EXTRACTING)
                await self.tracker.record_text(document.id, await extract())

            chunks = self.chunker.chunk_text(document.content)
            chunks = drop_short_chunks(chunks, self.min_chunk_length)

            await self.tracker.advance(document.id, DocumentStatus.EMBEDDING)

            if not chunks:
                logger.warning("no_chunks_created", document_id=document.id)

            embeddings = await self.generate_embeddings([c.content for c in chunks])

            stored = await self.vector_store.upsert_chunks(
                document.id,
                document.name,
                [(c.content, e) for c, e in zip(chunks, embeddings)],
            )

            await self.tracker.advance(document.id, DocumentStatus.INDEXED)

        except (Exception, asyncio.CancelledError) as e:
            logger.error(
                "document_ingestion_failed",
                document_id=document.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._discard_chunks(document.id)
            await self.tracker.fail(document.id, str(e) or type(e).__name__)
            raise

        self.stats["chunks_created"] += stored

        logger.info(
            "document_ingested",
            document_id=document.id,
            name=document.name,
            chunks_created=stored,
        )

        return IngestResult(
            document_id=document.id,
            status=DocumentStatus.INDEXED,
            chunks_created=stored,
        )

    async def _discard_chunks(self, document_id: str) -> None:
        # A failed attempt must not leave an earlier generation searchable
        try:
            await self.vector_store.remove_document(document_id)
        except Exception as e:
            logger.error(
                "failed_document_cleanup_failed",
                document_id=document_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def ingest_many(
        self,
        uploads: Sequence[Upload],
        progress_callback=None,
    ) -> List[IngestResult]:
        """Ingest several uploads, one after another.

        Each document succeeds or fails on its own; a failure is recorded in
        its result and the batch continues.

        Args:
            uploads: Files to ingest
            progress_callback: Optional callback function(current, total, name)
        """
        self.stats = self._empty_stats()
        results = []

        for idx, upload in enumerate(uploads, 1):
            if progress_callback:
                progress_callback(idx, len(uploads), upload.name)

            document_id = upload.document_id or Document.new_id()
            try:
                result = await self.ingest_upload(
                    upload.name,
                    upload.media_type,
                    upload.data,
                    owner_id=upload.owner_id,
                    document_id=document_id,
                )
                self.stats["files_processed"] += 1
            except Exception as e:
                logger.error("file_ingestion_failed", name=upload.name, error=str(e))
                self.stats["files_failed"] += 1
                # Continue with next file instead of failing entirely
                result = IngestResult(
                    document_id=document_id,
                    status=DocumentStatus.ERROR,
                    error=str(e),
                )
            results.append(result)

        logger.info("ingest_many_completed", stats=self.stats)
        return results
