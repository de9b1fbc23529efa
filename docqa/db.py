"""SQLite persistence for documents and chat sessions.

Tables:
- documents: uploaded documents, extracted text and lifecycle status
- sessions: chat sessions
- messages: chat messages with the sources used for assistant answers
"""
import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from docqa import config

logger = structlog.get_logger()

DB_PATH = config.DB_PATH


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection() -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database() -> None:
    """Initialize the database schema (idempotent)."""
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                owner_id TEXT,
                name TEXT NOT NULL,
                media_type TEXT NOT NULL,
                size INTEGER NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                category TEXT NOT NULL DEFAULT 'reference',
                status TEXT NOT NULL,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                title TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                sources_json TEXT,
                created_at TEXT NOT NULL,
                seq INTEGER NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_session
            ON messages(session_id, seq)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_owner
            ON documents(owner_id)
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(DB_PATH))

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


# Documents

def save_document(document: Dict[str, Any]) -> None:
    """Insert or replace a document row."""
    conn = get_connection()
    try:
        conn.execute("""
            INSERT INTO documents (
                id, owner_id, name, media_type, size, content,
                category, status, error, created_at, updated_at
            ) VALUES (
                :id, :owner_id, :name, :media_type, :size, :content,
                :category, :status, :error, :created_at, :updated_at
            )
            ON CONFLICT(id) DO UPDATE SET
                owner_id = excluded.owner_id,
                name = excluded.name,
                media_type = excluded.media_type,
                size = excluded.size,
                content = excluded.content,
                category = excluded.category,
                status = excluded.status,
                error = excluded.error,
                updated_at = excluded.updated_at
        """, document)
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("document_save_failed", error=str(e), document_id=document.get("id"))
        raise
    finally:
        conn.close()


def update_document_status(
    document_id: str, status: str, error: Optional[str] = None
) -> bool:
    """Set a document's status. Re-applying the current status is a no-op.

    Returns:
        True if the row changed
    """
    conn = get_connection()
    try:
        cursor = conn.execute("""
            UPDATE documents
            SET status = ?, error = ?, updated_at = ?
            WHERE id = ? AND status != ?
        """, (status, error, _now(), document_id, status))
        conn.commit()
        return cursor.rowcount > 0
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("document_status_update_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def get_document(document_id: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_documents(owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """List documents, newest first, optionally for one owner."""
    conn = get_connection()
    try:
        if owner_id is None:
            rows = conn.execute(
                "SELECT * FROM documents ORDER BY created_at DESC"
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM documents WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def delete_document(document_id: str) -> bool:
    conn = get_connection()
    try:
        cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        conn.commit()
        return cursor.rowcount > 0
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("document_delete_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


# Sessions and messages

def create_session(session_id: str, title: Optional[str] = None) -> None:
    conn = get_connection()
    try:
        conn.execute(
            "INSERT INTO sessions (id, title, created_at) VALUES (?, ?, ?)",
            (session_id, title, _now()),
        )
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("session_create_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT id, title, created_at FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_sessions(limit: int = 50) -> List[Dict[str, Any]]:
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT id, title, created_at FROM sessions ORDER BY created_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def update_session_title(session_id: str, title: str) -> None:
    conn = get_connection()
    try:
        conn.execute("UPDATE sessions SET title = ? WHERE id = ?", (title, session_id))
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("session_title_update_failed", error=str(e))
        raise
    finally:
        conn.close()


def delete_session(session_id: str) -> bool:
    conn = get_connection()
    try:
        cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        conn.commit()
        return cursor.rowcount > 0
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("session_delete_failed", error=str(e), session_id=session_id)
        raise
    finally:
        conn.close()


def add_message(
    message_id: str,
    session_id: str,
    role: str,
    content: str,
    sources: Optional[List[Dict[str, Any]]] = None,
    created_at: Optional[str] = None,
) -> None:
    """Append a message to a session. Messages are never updated afterwards."""
    conn = get_connection()
    try:
        seq = conn.execute(
            "SELECT COALESCE(MAX(seq), 0) + 1 FROM messages WHERE session_id = ?",
            (session_id,),
        ).fetchone()[0]
        conn.execute("""
            INSERT INTO messages (id, session_id, role, content, sources_json, created_at, seq)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            message_id,
            session_id,
            role,
            content,
            json.dumps(sources) if sources else None,
            created_at or _now(),
            seq,
        ))
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("message_insert_failed", error=str(e), session_id=session_id)
        raise
    finally:
        conn.close()


def _message_row(row: sqlite3.Row) -> Dict[str, Any]:
    message = dict(row)
    sources_json = message.pop("sources_json")
    message["sources"] = json.loads(sources_json) if sources_json else []
    message.pop("seq", None)
    return message


def get_messages(session_id: str) -> List[Dict[str, Any]]:
    """All messages of a session in chronological order."""
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY seq", (session_id,)
        ).fetchall()
        return [_message_row(row) for row in rows]
    finally:
        conn.close()


def get_recent_messages(session_id: str, limit: int) -> List[Dict[str, Any]]:
    """The last `limit` messages of a session in chronological order."""
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY seq DESC LIMIT ?",
            (session_id, limit),
        ).fetchall()
        return [_message_row(row) for row in reversed(rows)]
    finally:
        conn.close()
