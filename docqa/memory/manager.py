"""Chat sessions backed by SQLite.

Messages are stored with the sources their answers cited, and the most recent
ones are loaded back as a Conversation for the next question.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from docqa import db
from docqa.rag.models import Conversation, Message, RetrievalResult

logger = structlog.get_logger()


class SessionNotFound(KeyError):
    """Raised when a chat session does not exist."""


class ConversationManager:
    """Session CRUD plus conversion between stored rows and Conversation objects."""

    def __init__(self, context_window_size: int = 6):
        """
        Args:
            context_window_size: Messages loaded back when no explicit limit is given
        """
        self.context_window_size = context_window_size

    def create_session(self, title: Optional[str] = None) -> str:
        """Create an empty session and return its id."""
        session_id = str(uuid.uuid4())
        db.create_session(session_id, title)
        logger.info("conversation_session_created", session_id=session_id)
        return session_id

    def save_message(self, session_id: str, message: Message) -> None:
        """Persist a finished message.

        Streaming messages are saved only once they are finished, so stored
        messages never change afterwards.
        """
        if message.streaming:
            raise ValueError(f"Message {message.id} is still streaming")

        db.add_message(
            message.id,
            session_id,
            message.role,
            message.content,
            [s.to_source() for s in message.sources],
            created_at=message.created_at.isoformat(),
        )
        logger.info(
            "conversation_message_added",
            session_id=session_id,
            role=message.role,
            message_id=message.id,
        )

    def load_conversation(self, session_id: str, limit: Optional[int] = None) -> Conversation:
        """Rebuild the recent part of a session as a Conversation.

        Raises:
            SessionNotFound: If the session does not exist
        """
        if db.get_session(session_id) is None:
            raise SessionNotFound(session_id)

        rows = db.get_recent_messages(session_id, limit or self.context_window_size)
        conversation = Conversation(id=session_id)
        for row in rows:
            conversation.messages.append(
                Message(
                    id=row["id"],
                    role=row["role"],
                    content=row["content"],
                    sources=[RetrievalResult.from_source(s) for s in row["sources"]],
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
            )

        logger.info(
            "conversation_loaded",
            session_id=session_id,
            count=len(conversation.messages),
        )
        return conversation

    def get_all_messages(self, session_id: str) -> List[Dict[str, Any]]:
        """All messages of a session in chronological order."""
        return db.get_messages(session_id)

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return db.get_session(session_id)

    def list_sessions(self, limit: int = 50) -> List[Dict[str, Any]]:
        """List sessions, most recent first."""
        return db.list_sessions(limit)

    def delete_session(self, session_id: str) -> bool:
        """Delete a session with its messages; False when it did not exist."""
        deleted = db.delete_session(session_id)
        if deleted:
            logger.info("conversation_session_deleted", session_id=session_id)
        return deleted

    def update_session_title(self, session_id: str, first_message: str) -> str:
        """Set the session title from its first user message (max 50 chars)."""
        title = first_message[:50]
        if len(first_message) > 50:
            title = title.rsplit(" ", 1)[0] + "..."

        db.update_session_title(session_id, title)
        logger.info("session_title_updated", session_id=session_id, title=title)
        return title
