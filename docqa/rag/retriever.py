"""Retriever for semantic search over indexed documents.

Handles:
- Query embedding generation
- Vector store similarity search
- Relevance threshold filtering and result capping
"""
from typing import List, Optional

import structlog

from docqa import config
from docqa.rag.embeddings import EmbeddingProvider
from docqa.rag.models import RetrievalResult
from docqa.rag.store import VectorStore

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        top_k: int = None,
        threshold: float = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Provider used to embed queries; must be the one used at ingestion
            vector_store: Store to search
            top_k: Number of results to retrieve (default from config)
            threshold: Minimum cosine similarity to keep a result (default from config)
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.threshold = config.RELEVANCE_THRESHOLD if threshold is None else threshold

        logger.info(
            "retriever_initialized",
            embedding_model=getattr(embedder, "model", None),
            top_k=self.top_k,
            threshold=self.threshold,
        )

    async def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
        owner_id: Optional[str] = None,
    ) -> List[RetrievalResult]:
        """Retrieve relevant chunks for a query.

        An empty list means no relevant context was found; it is not an error.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)
            threshold: Minimum similarity (overrides default)
            owner_id: Restrict results to one owner's documents (server-side stores)

        Returns:
            List of RetrievalResult objects, best match first

        Raises:
            EmbeddingUnavailable, EmbeddingFailed: If the query cannot be embedded
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = top_k or self.top_k
        threshold = self.threshold if threshold is None else threshold

        logger.info("retrieval_started", query_length=len(query), top_k=top_k)

        query_embedding = await self.embedder.embed(query)

        logger.debug("query_embedded", dimension=len(query_embedding))

        candidates = await self.vector_store.search_similar(
            query_embedding,
            top_k,
            threshold=threshold,
            owner_id=owner_id,
        )

        results = [r for r in candidates if r.similarity >= threshold][:top_k]

        if not results:
            logger.info("no_relevant_context_found", candidates=len(candidates))
            return []

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_similarity=results[0].similarity,
        )

        return results
