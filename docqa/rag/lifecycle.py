"""Document lifecycle tracking.

    uploading -> extracting -> embedding -> indexed
        \\            \\             \\
         +------------+-------------+--> error

uploading may go straight to embedding when there is nothing to extract.
indexed and error end an ingestion attempt; begin() starts a fresh one.
"""
from typing import Callable, Dict, List, Optional

import structlog

from docqa.documents import DocumentStore
from docqa.errors import InvalidTransition
from docqa.rag.models import Document, DocumentStatus, utcnow

logger = structlog.get_logger()

StatusListener = Callable[[Document], None]

TRANSITIONS = {
    DocumentStatus.UPLOADING: {
        DocumentStatus.EXTRACTING,
        DocumentStatus.EMBEDDING,
        DocumentStatus.ERROR,
    },
    DocumentStatus.EXTRACTING: {DocumentStatus.EMBEDDING, DocumentStatus.ERROR},
    DocumentStatus.EMBEDDING: {DocumentStatus.INDEXED, DocumentStatus.ERROR},
    DocumentStatus.INDEXED: set(),
    DocumentStatus.ERROR: set(),
}


class LifecycleTracker:
    """Owns every document's status and mirrors it to a document store."""

    def __init__(self, document_store: Optional[DocumentStore] = None):
        self.document_store = document_store
        self._documents: Dict[str, Document] = {}
        self._listeners: List[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> None:
        """Call listener(document) after every status change."""
        self._listeners.append(listener)

    def get(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)

    def status(self, document_id: str) -> Optional[DocumentStatus]:
        document = self._documents.get(document_id)
        return document.status if document else None

    def forget(self, document_id: str) -> None:
        self._documents.pop(document_id, None)

    async def begin(self, document: Document) -> Document:
        """Start a fresh ingestion attempt for document."""
        previous = self._documents.get(document.id)
        if previous is not None and not previous.status.is_terminal:
            logger.warning(
                "ingestion_restarted_while_in_flight",
                document_id=document.id,
                previous_status=previous.status.value,
            )

        document.status = DocumentStatus.UPLOADING
        document.error = None
        document.updated_at = utcnow()
        self._documents[document.id] = document

        if self.document_store is not None:
            await self.document_store.save(document)

        logger.info("document_ingestion_started", document_id=document.id, name=document.name)
        self._notify(document)
        return document

    async def record_text(self, document_id: str, content: str) -> None:
        """Store extracted text for a document in flight."""
        document = self._require(document_id)
        document.content = content
        document.updated_at = utcnow()
        if self.document_store is not None:
            await self.document_store.save(document)

    async def advance(self, document_id: str, status: DocumentStatus) -> Document:
        """Move a document to its next stage.

        Raises:
            InvalidTransition: If the state machine does not allow the move
        """
        document = self._require(document_id)

        if status == document.status:
            return document
        if status not in TRANSITIONS[document.status]:
            raise InvalidTransition(
                f"Document {document_id}: {document.status.value} -> {status.value} not allowed"
            )

        await self._apply(document, status)
        return document

    async def fail(self, document_id: str, error: str) -> None:
        """Move a document to error, best effort.

        Never raises: a failure to persist the error status is only logged.
        """
        document = self._documents.get(document_id)
        if document is None:
            logger.error("unknown_document_failed", document_id=document_id, error=error)
            return
        if document.status == DocumentStatus.INDEXED:
            logger.warning("indexed_document_not_failed", document_id=document_id, error=error)
            return

        document.error = error
        try:
            await self._apply(document, DocumentStatus.ERROR)
        except Exception as e:
            logger.error(
                "error_status_persist_failed",
                document_id=document_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._set(document, DocumentStatus.ERROR)

    async def _apply(self, document: Document, status: DocumentStatus) -> None:
        # Stored first: a failed write leaves the in-memory status where it was
        if self.document_store is not None:
            await self.document_store.update_status(
                document.id, status.persisted, error=document.error
            )
        self._set(document, status)

    def _set(self, document: Document, status: DocumentStatus) -> None:
        previous = document.status
        document.status = status
        document.updated_at = utcnow()

        logger.info(
            "document_status_changed",
            document_id=document.id,
            previous=previous.value,
            status=status.value,
        )
        self._notify(document)

    def _notify(self, document: Document) -> None:
        for listener in self._listeners:
            listener(document)

    def _require(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise InvalidTransition(f"No ingestion in progress for document {document_id}")
        return document
