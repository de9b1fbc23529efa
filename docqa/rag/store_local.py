"""Local vector store for semantic search.

Handles:
- In-memory chunk corpus restored from a JSON snapshot
- Whole-corpus snapshot after every mutation
- Cosine ranking by full linear scan (no index structure; the corpus is
  expected to stay small)
"""
import json
import os
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import structlog
from pydantic import TypeAdapter, ValidationError

from docqa import config
from docqa.errors import InvalidVector, StoreReadFailed, StoreWriteFailed
from docqa.rag.models import ChunkRecord, RetrievalResult
from docqa.rag.store import ChunkInput, VectorStore
from docqa.rag.vectors import as_array, cosine_scores, norm
from docqa.schemas import PersistedChunk

logger = structlog.get_logger()

_snapshot_adapter = TypeAdapter(List[PersistedChunk])


class LocalVectorStore(VectorStore):
    """Vector store holding every chunk in memory, persisted as one JSON file."""

    def __init__(self, path: Path = None):
        """Initialize the local vector store.

        Args:
            path: Snapshot file (default: config.VECTOR_STORE_PATH)
        """
        self.path = Path(path) if path else config.VECTOR_STORE_PATH
        self._records: List[ChunkRecord] = []
        self._matrix: Optional[np.ndarray] = None

        logger.info("local_store_initialized", path=str(self.path))

    @property
    def dimension(self) -> Optional[int]:
        if not self._records:
            return None
        return len(self._records[0].embedding)

    async def load(self) -> None:
        """Restore the corpus from disk. A missing snapshot means an empty store.

        Raises:
            StoreReadFailed: If the snapshot cannot be read or is malformed
        """
        if not self.path.exists():
            logger.info("no_snapshot_found_starting_empty", path=str(self.path))
            self._commit([])
            return

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise StoreReadFailed(f"Failed to read {self.path}", detail=str(e)) from e

        try:
            persisted = _snapshot_adapter.validate_json(raw)
        except ValidationError as e:
            raise StoreReadFailed(f"Corrupt vector store snapshot {self.path}", detail=str(e)) from e

        records = [
            ChunkRecord(
                document_id=p.document_id,
                document_name=p.document_name,
                chunk_index=p.chunk_index,
                content=p.content,
                embedding=p.embedding,
            )
            for p in persisted
        ]

        try:
            self._validate_embeddings(records, expected_dimension=None)
        except InvalidVector as e:
            raise StoreReadFailed(f"Corrupt vector store snapshot {self.path}", detail=str(e)) from e

        self._commit(records)

        logger.info(
            "local_store_loaded",
            path=str(self.path),
            chunk_count=len(records),
            dimension=self.dimension,
        )

    def _save(self, records: List[ChunkRecord]) -> None:
        """Write the whole corpus; the previous file survives a failed write."""
        payload = [
            PersistedChunk(
                id=r.id,
                document_id=r.document_id,
                content=r.content,
                embedding=r.embedding,
                chunk_index=r.chunk_index,
                document_name=r.document_name,
            ).model_dump(by_alias=True)
            for r in records
        ]

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("local_store_save_failed", path=str(self.path), error=str(e))
            raise StoreWriteFailed(f"Failed to write {self.path}", detail=str(e)) from e

        logger.debug("local_store_saved", path=str(self.path), chunk_count=len(records))

    def _commit(self, records: List[ChunkRecord]) -> None:
        self._records = records
        if records:
            self._matrix = np.array([r.embedding for r in records], dtype=np.float64)
        else:
            self._matrix = None

    def _validate_embeddings(
        self, records: Sequence[ChunkRecord], expected_dimension: Optional[int]
    ) -> None:
        for record in records:
            dimension = len(record.embedding)
            if expected_dimension is None:
                expected_dimension = dimension
            if dimension != expected_dimension:
                raise InvalidVector(
                    f"Chunk {record.id} has dimension {dimension}, "
                    f"store holds dimension {expected_dimension}"
                )
            norm(record.embedding)

    async def upsert_chunks(
        self,
        document_id: str,
        document_name: str,
        chunks: Sequence[ChunkInput],
    ) -> int:
        new_records = [
            ChunkRecord(
                document_id=document_id,
                document_name=document_name,
                chunk_index=index,
                content=content,
                embedding=[float(x) for x in embedding],
            )
            for index, (content, embedding) in enumerate(chunks)
        ]

        others = [r for r in self._records if r.document_id != document_id]
        expected = len(others[0].embedding) if others else None
        self._validate_embeddings(new_records, expected)

        previous = len(self._records) - len(others)
        records = others + new_records
        self._save(records)
        self._commit(records)

        logger.info(
            "chunks_upserted",
            document_id=document_id,
            document_name=document_name,
            chunk_count=len(new_records),
            replaced_chunks=previous,
            total_chunks=len(records),
        )

        return len(new_records)

    async def search_similar(
        self,
        query_embedding: Sequence[float],
        top_k: int = None,
        *,
        threshold: Optional[float] = None,
        owner_id: Optional[str] = None,
    ) -> List[RetrievalResult]:
        """Rank every stored chunk against the query.

        owner_id is accepted for interface compatibility; a local store holds
        a single user's corpus.

        Raises:
            InvalidVector: If the query has zero norm or the wrong dimension
        """
        if top_k is None:
            top_k = config.RETRIEVAL_TOP_K

        if self._matrix is None or top_k <= 0:
            return []

        scores = cosine_scores(self._matrix, as_array(query_embedding))
        order = np.argsort(-scores, kind="stable")

        results = []
        for position in order:
            score = float(scores[position])
            if threshold is not None and score < threshold:
                break
            record = self._records[position]
            results.append(
                RetrievalResult(
                    content=record.content,
                    document_name=record.document_name,
                    similarity=score,
                    chunk_index=record.chunk_index,
                    document_id=record.document_id,
                )
            )
            if len(results) >= top_k:
                break

        logger.info(
            "vector_search_completed",
            top_k=top_k,
            results_found=len(results),
            top_similarity=results[0].similarity if results else None,
        )

        return results

    async def remove_document(self, document_id: str) -> int:
        records = [r for r in self._records if r.document_id != document_id]
        removed = len(self._records) - len(records)

        self._save(records)
        self._commit(records)

        logger.info("document_chunks_removed", document_id=document_id, removed=removed)
        return removed

    async def clear(self) -> None:
        self._save([])
        self._commit([])
        logger.warning("local_store_cleared", path=str(self.path))

    async def document_count(self) -> int:
        return len({r.document_id for r in self._records})

    async def chunk_count(self) -> int:
        return len(self._records)
