"""Supabase-backed vector store.

Chunks live in a pgvector table; similarity ranking is delegated to the
`search_documents` Postgres function, which thresholds, caps and scopes the
results to one owner before returning them. Rows come back already ranked and
are not re-ranked here.
"""
from typing import List, Optional, Sequence

import httpx
import structlog
from postgrest.exceptions import APIError
from pydantic import ValidationError
from supabase import AsyncClient, acreate_client

from docqa import config
from docqa.errors import InvalidConfiguration, StoreReadFailed, StoreWriteFailed
from docqa.rag.models import RetrievalResult
from docqa.rag.store import ChunkInput, VectorStore
from docqa.rag.vectors import norm
from docqa.schemas import SimilarityRow

logger = structlog.get_logger()

BACKEND_ERRORS = (APIError, httpx.HTTPError)


def _detail(error: Exception) -> str:
    if isinstance(error, APIError):
        return error.message or str(error)
    return str(error)


async def create_supabase_client(url: str = None, key: str = None) -> AsyncClient:
    """Create an async Supabase client from explicit values or config.

    Raises:
        InvalidConfiguration: If the URL or key is missing
    """
    url = url or config.SUPABASE_URL
    key = key or config.SUPABASE_KEY
    if not url or not key:
        raise InvalidConfiguration(
            "Supabase credentials not configured. "
            "Set SUPABASE_URL and SUPABASE_KEY environment variables."
        )
    client = await acreate_client(url, key)
    logger.info("supabase_client_initialized", url=url)
    return client


class SupabaseVectorStore(VectorStore):
    """Vector store delegating storage and ranking to Supabase."""

    def __init__(
        self,
        client: AsyncClient,
        owner_id: Optional[str] = None,
        table: str = "document_chunks",
        search_function: str = "search_documents",
        default_threshold: float = None,
    ):
        self.client = client
        self.owner_id = owner_id
        self.table = table
        self.search_function = search_function
        self.default_threshold = (
            config.RELEVANCE_THRESHOLD if default_threshold is None else default_threshold
        )

    async def upsert_chunks(
        self,
        document_id: str,
        document_name: str,
        chunks: Sequence[ChunkInput],
    ) -> int:
        """Delete the previous generation, then insert the new one in a single request.

        A failure between the two steps leaves the document with no chunks,
        never with a mix of generations.
        """
        rows = []
        for index, (content, embedding) in enumerate(chunks):
            norm(embedding)
            rows.append(
                {
                    "document_id": document_id,
                    "chunk_index": index,
                    "content": content,
                    "embedding": [float(x) for x in embedding],
                }
            )

        try:
            await self.client.table(self.table).delete().eq("document_id", document_id).execute()
            if rows:
                await self.client.table(self.table).insert(rows).execute()
        except BACKEND_ERRORS as e:
            logger.error(
                "supabase_chunk_upsert_failed",
                document_id=document_id,
                error=_detail(e),
            )
            raise StoreWriteFailed(
                f"Failed to store chunks for document {document_id}", detail=_detail(e)
            ) from e

        logger.info(
            "chunks_upserted",
            document_id=document_id,
            document_name=document_name,
            chunk_count=len(rows),
        )
        return len(rows)

    async def search_similar(
        self,
        query_embedding: Sequence[float],
        top_k: int = None,
        *,
        threshold: Optional[float] = None,
        owner_id: Optional[str] = None,
    ) -> List[RetrievalResult]:
        if top_k is None:
            top_k = config.RETRIEVAL_TOP_K
        if top_k <= 0:
            return []

        norm(query_embedding)

        params = {
            "query_embedding": [float(x) for x in query_embedding],
            "match_threshold": self.default_threshold if threshold is None else threshold,
            "match_count": top_k,
            "filter_user_id": owner_id or self.owner_id,
        }

        try:
            response = await self.client.rpc(self.search_function, params).execute()
        except BACKEND_ERRORS as e:
            logger.error("supabase_search_failed", error=_detail(e))
            raise StoreReadFailed("Similarity search failed", detail=_detail(e)) from e

        try:
            rows = [SimilarityRow.model_validate(row) for row in response.data or []]
        except ValidationError as e:
            raise StoreReadFailed("Malformed similarity search result", detail=str(e)) from e

        results = [
            RetrievalResult(
                content=row.content,
                document_name=row.document_name,
                similarity=row.similarity,
                chunk_index=row.chunk_index,
                document_id=row.document_id,
            )
            for row in rows[:top_k]
        ]

        logger.info(
            "vector_search_completed",
            top_k=top_k,
            results_found=len(results),
            top_similarity=results[0].similarity if results else None,
        )
        return results

    async def remove_document(self, document_id: str) -> int:
        try:
            response = (
                await self.client.table(self.table)
                .delete()
                .eq("document_id", document_id)
                .execute()
            )
        except BACKEND_ERRORS as e:
            raise StoreWriteFailed(
                f"Failed to remove chunks of document {document_id}", detail=_detail(e)
            ) from e

        removed = len(response.data or [])
        logger.info("document_chunks_removed", document_id=document_id, removed=removed)
        return removed

    async def clear(self) -> None:
        try:
            # PostgREST refuses an unfiltered delete
            await self.client.table(self.table).delete().gte("chunk_index", 0).execute()
        except BACKEND_ERRORS as e:
            raise StoreWriteFailed("Failed to clear chunks", detail=_detail(e)) from e
        logger.warning("supabase_store_cleared", table=self.table)

    async def document_count(self) -> int:
        try:
            response = await self.client.table(self.table).select("document_id").execute()
        except BACKEND_ERRORS as e:
            raise StoreReadFailed("Failed to count documents", detail=_detail(e)) from e
        return len({row["document_id"] for row in response.data or []})

    async def chunk_count(self) -> int:
        try:
            response = (
                await self.client.table(self.table)
                .select("id", count="exact")
                .execute()
            )
        except BACKEND_ERRORS as e:
            raise StoreReadFailed("Failed to count chunks", detail=_detail(e)) from e
        return response.count or 0
