"""Document stores: where document records and their status live.

Statuses are written in their persisted form (processing, indexed, error).
"""
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import AsyncClient

from docqa import db
from docqa.errors import StoreReadFailed, StoreWriteFailed
from docqa.rag.models import Document, DocumentStatus

logger = structlog.get_logger()


class DocumentStore(ABC):
    @abstractmethod
    async def save(self, document: Document) -> None:
        """Insert or replace a document record."""

    @abstractmethod
    async def update_status(
        self, document_id: str, status: str, error: Optional[str] = None
    ) -> bool:
        """Apply a persisted status; re-applying the current one is a no-op.

        Returns:
            True if the stored record changed
        """

    @abstractmethod
    async def get(self, document_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def list(self, owner_id: Optional[str] = None) -> List[Document]:
        ...

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        ...


def _parse_time(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now().astimezone()


class SQLiteDocumentStore(DocumentStore):
    """Document store in the local SQLite database."""

    def __init__(self, initialize: bool = True):
        if initialize:
            db.init_database()

    @staticmethod
    def _to_row(document: Document) -> Dict[str, Any]:
        return {
            "id": document.id,
            "owner_id": document.owner_id,
            "name": document.name,
            "media_type": document.media_type,
            "size": document.size,
            "content": document.content,
            "category": document.category,
            "status": document.status.persisted,
            "error": document.error,
            "created_at": document.created_at.isoformat(),
            "updated_at": document.updated_at.isoformat(),
        }

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> Document:
        return Document(
            id=row["id"],
            name=row["name"],
            media_type=row["media_type"],
            size=row["size"],
            content=row["content"],
            status=DocumentStatus.from_persisted(row["status"]),
            owner_id=row["owner_id"],
            category=row["category"],
            error=row["error"],
            created_at=_parse_time(row["created_at"]),
            updated_at=_parse_time(row["updated_at"]),
        )

    async def save(self, document: Document) -> None:
        try:
            db.save_document(self._to_row(document))
        except sqlite3.Error as e:
            raise StoreWriteFailed(f"Failed to save document {document.id}", detail=str(e)) from e

    async def update_status(
        self, document_id: str, status: str, error: Optional[str] = None
    ) -> bool:
        try:
            changed = db.update_document_status(document_id, status, error)
        except sqlite3.Error as e:
            raise StoreWriteFailed(
                f"Failed to update status of document {document_id}", detail=str(e)
            ) from e
        if changed:
            logger.debug("document_status_persisted", document_id=document_id, status=status)
        return changed

    async def get(self, document_id: str) -> Optional[Document]:
        try:
            row = db.get_document(document_id)
        except sqlite3.Error as e:
            raise StoreReadFailed(f"Failed to read document {document_id}", detail=str(e)) from e
        return self._from_row(row) if row else None

    async def list(self, owner_id: Optional[str] = None) -> List[Document]:
        try:
            rows = db.list_documents(owner_id)
        except sqlite3.Error as e:
            raise StoreReadFailed("Failed to list documents", detail=str(e)) from e
        return [self._from_row(row) for row in rows]

    async def delete(self, document_id: str) -> bool:
        try:
            return db.delete_document(document_id)
        except sqlite3.Error as e:
            raise StoreWriteFailed(f"Failed to delete document {document_id}", detail=str(e)) from e


class SupabaseDocumentStore(DocumentStore):
    """Document store in the Supabase `documents` table."""

    def __init__(self, client: AsyncClient, table: str = "documents"):
        self.client = client
        self.table = table

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> Document:
        return Document(
            id=row["id"],
            name=row["name"],
            media_type=row.get("file_type") or "text/plain",
            size=row.get("file_size") or 0,
            content=row.get("content") or "",
            status=DocumentStatus.from_persisted(row["status"]),
            owner_id=row.get("user_id"),
            created_at=_parse_time(row.get("created_at")),
            updated_at=_parse_time(row.get("updated_at") or row.get("created_at")),
        )

    async def save(self, document: Document) -> None:
        row = {
            "id": document.id,
            "user_id": document.owner_id,
            "name": document.name,
            "content": document.content.replace("\x00", ""),
            "file_type": document.media_type,
            "file_size": document.size,
            "status": document.status.persisted,
        }
        try:
            await self.client.table(self.table).upsert(row).execute()
        except (APIError, httpx.HTTPError) as e:
            raise StoreWriteFailed(f"Failed to save document {document.id}", detail=str(e)) from e

    async def update_status(
        self, document_id: str, status: str, error: Optional[str] = None
    ) -> bool:
        try:
            response = (
                await self.client.table(self.table)
                .update({"status": status})
                .eq("id", document_id)
                .neq("status", status)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise StoreWriteFailed(
                f"Failed to update status of document {document_id}", detail=str(e)
            ) from e
        return bool(response.data)

    async def get(self, document_id: str) -> Optional[Document]:
        try:
            response = (
                await self.client.table(self.table).select("*").eq("id", document_id).execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise StoreReadFailed(f"Failed to read document {document_id}", detail=str(e)) from e
        rows = response.data or []
        return self._from_row(rows[0]) if rows else None

    async def list(self, owner_id: Optional[str] = None) -> List[Document]:
        query = self.client.table(self.table).select("*")
        if owner_id is not None:
            query = query.eq("user_id", owner_id)
        try:
            response = await query.order("created_at", desc=True).execute()
        except (APIError, httpx.HTTPError) as e:
            raise StoreReadFailed("Failed to list documents", detail=str(e)) from e
        return [self._from_row(row) for row in response.data or []]

    async def delete(self, document_id: str) -> bool:
        try:
            response = await self.client.table(self.table).delete().eq("id", document_id).execute()
        except (APIError, httpx.HTTPError) as e:
            raise StoreWriteFailed(f"Failed to delete document {document_id}", detail=str(e)) from e
        return bool(response.data)
