"""Vector store interface."""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from docqa.rag.models import RetrievalResult

# (chunk text, embedding) pairs in chunk order
ChunkInput = Tuple[str, Sequence[float]]


class VectorStore(ABC):
    """Persists chunk embeddings and answers nearest-neighbour queries."""

    @abstractmethod
    async def upsert_chunks(
        self,
        document_id: str,
        document_name: str,
        chunks: Sequence[ChunkInput],
    ) -> int:
        """Replace every stored chunk of document_id with chunks.

        After this returns, searches never see a mix of the previous and the
        new generation for that document.

        Returns:
            Number of chunks stored
        """

    @abstractmethod
    async def search_similar(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        *,
        threshold: Optional[float] = None,
        owner_id: Optional[str] = None,
    ) -> List[RetrievalResult]:
        """Return at most top_k chunks ordered by descending cosine similarity."""

    @abstractmethod
    async def remove_document(self, document_id: str) -> int:
        """Delete every chunk of a document and return how many were removed."""

    @abstractmethod
    async def clear(self) -> None:
        """Delete every chunk."""

    @abstractmethod
    async def document_count(self) -> int:
        """Number of distinct document ids present among stored chunks."""

    @abstractmethod
    async def chunk_count(self) -> int:
        """Number of stored chunks."""
