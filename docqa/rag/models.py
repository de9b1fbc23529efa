"""Domain records shared by the ingestion and query paths."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from docqa.errors import MessageImmutable, MessageStreamActive


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """Ingestion stage of a document."""

    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    INDEXED = "indexed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.INDEXED, DocumentStatus.ERROR)

    @property
    def persisted(self) -> str:
        """Status as written to the document store (processing/indexed/error)."""
        if self.is_terminal:
            return self.value
        return "processing"

    @classmethod
    def from_persisted(cls, value: str) -> "DocumentStatus":
        """Inverse of `persisted`; "processing" maps to the first stage."""
        if value == "processing":
            return cls.UPLOADING
        return cls(value)


@dataclass
class Document:
    """An uploaded document and its extracted text."""

    id: str
    name: str
    media_type: str
    size: int
    content: str = ""
    status: DocumentStatus = DocumentStatus.UPLOADING
    owner_id: Optional[str] = None
    category: str = "reference"
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "media_type": self.media_type,
            "size": self.size,
            "status": self.status.value,
            "owner_id": self.owner_id,
            "category": self.category,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_content:
            data["content"] = self.content
        return data


@dataclass
class ChunkRecord:
    """A chunk of one document generation together with its embedding."""

    document_id: str
    document_name: str
    chunk_index: int
    content: str
    embedding: List[float]

    @property
    def id(self) -> str:
        return f"{self.document_id}_{self.chunk_index}"


@dataclass
class RetrievalResult:
    """A single retrieved chunk with its similarity to the query."""

    content: str
    document_name: str
    similarity: float
    chunk_index: Optional[int] = None
    document_id: Optional[str] = None

    def preview(self, limit: int = 200) -> str:
        if len(self.content) <= limit:
            return self.content
        return self.content[:limit] + "..."

    def to_source(self) -> Dict[str, Any]:
        """Source entry as attached to assistant messages."""
        return {
            "documentName": self.document_name,
            "documentId": self.document_id,
            "chunkIndex": self.chunk_index,
            "similarity": round(self.similarity, 4),
            "content": self.preview(),
        }

    @classmethod
    def from_source(cls, source: Dict[str, Any]) -> "RetrievalResult":
        return cls(
            content=source.get("content", ""),
            document_name=source.get("documentName", ""),
            similarity=float(source.get("similarity", 0.0)),
            chunk_index=source.get("chunkIndex"),
            document_id=source.get("documentId"),
        )


@dataclass
class Message:
    """A conversation turn.

    Only an assistant message that is still streaming accepts new text.
    """

    role: str
    content: str
    sources: List[RetrievalResult] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)
    streaming: bool = False

    def append_fragment(self, fragment: str) -> None:
        if not self.streaming:
            raise MessageImmutable(f"Message {self.id} is not streaming")
        self.content += fragment

    def finish(self) -> None:
        self.streaming = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "sources": [s.to_source() for s in self.sources],
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Conversation:
    """Append-only sequence of messages for one chat session."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    messages: List[Message] = field(default_factory=list)

    def append(self, message: Message) -> Message:
        if self.messages and self.messages[-1].streaming:
            raise MessageStreamActive(
                f"Message {self.messages[-1].id} is still streaming"
            )
        self.messages.append(message)
        return message

    def history(self, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """Recent finished turns formatted for a chat backend."""
        finished = [m for m in self.messages if not m.streaming]
        if limit is not None:
            finished = finished[-limit:] if limit > 0 else []
        return [{"role": m.role, "content": m.content} for m in finished]

    @property
    def last(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None
