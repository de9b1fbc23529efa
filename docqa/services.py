"""Builds the component graph from configuration.

Everything the API server and the CLI use is created here once and passed
around explicitly.
"""
from dataclasses import dataclass
from typing import Optional

import structlog

from docqa import config, db
from docqa.documents import DocumentStore, SQLiteDocumentStore, SupabaseDocumentStore
from docqa.errors import InvalidConfiguration
from docqa.memory import ConversationManager
from docqa.rag.chunker import TextChunker
from docqa.rag.embeddings import EmbeddingProvider, create_embedding_provider
from docqa.rag.ingest import IngestPipeline
from docqa.rag.lifecycle import LifecycleTracker
from docqa.rag.retriever import Retriever
from docqa.rag.store import VectorStore
from docqa.rag.store_local import LocalVectorStore
from docqa.rag.store_supabase import SupabaseVectorStore, create_supabase_client
from docqa.rag.synthesizer import AnswerSynthesizer, ChatBackend, create_chat_backend

logger = structlog.get_logger()


@dataclass
class Services:
    embedder: EmbeddingProvider
    vector_store: VectorStore
    document_store: DocumentStore
    tracker: LifecycleTracker
    retriever: Retriever
    backend: ChatBackend
    synthesizer: AnswerSynthesizer
    pipeline: IngestPipeline
    conversations: ConversationManager


def assemble(
    embedder: EmbeddingProvider,
    vector_store: VectorStore,
    document_store: DocumentStore,
    backend: ChatBackend,
    conversations: Optional[ConversationManager] = None,
) -> Services:
    """Wire already-built backends into the pipeline components."""
    tracker = LifecycleTracker(document_store)
    retriever = Retriever(embedder, vector_store)
    return Services(
        embedder=embedder,
        vector_store=vector_store,
        document_store=document_store,
        tracker=tracker,
        retriever=retriever,
        backend=backend,
        synthesizer=AnswerSynthesizer(backend, retriever),
        pipeline=IngestPipeline(
            embedder,
            vector_store,
            tracker,
            chunker=TextChunker(),
        ),
        conversations=conversations
        or ConversationManager(context_window_size=config.CONTEXT_WINDOW_SIZE),
    )


async def build_services(backend_kind: str = None) -> Services:
    """Create every component according to config.

    Raises:
        InvalidConfiguration: For an unknown backend or missing credentials
        StoreReadFailed: If the local vector snapshot cannot be loaded
    """
    backend_kind = (backend_kind or config.VECTOR_STORE_BACKEND).lower()

    # Chat sessions always live in the local database
    db.init_database()

    if backend_kind == "local":
        vector_store = LocalVectorStore()
        await vector_store.load()
        document_store = SQLiteDocumentStore()
    elif backend_kind == "supabase":
        client = await create_supabase_client()
        vector_store = SupabaseVectorStore(client)
        document_store = SupabaseDocumentStore(client)
    else:
        raise InvalidConfiguration(f"Unknown vector store backend: {backend_kind}")

    services = assemble(
        embedder=create_embedding_provider(),
        vector_store=vector_store,
        document_store=document_store,
        backend=create_chat_backend(),
    )

    logger.info(
        "services_built",
        vector_store=backend_kind,
        embedding_provider=config.EMBEDDING_PROVIDER,
        chat_provider=config.CHAT_PROVIDER,
    )
    return services
