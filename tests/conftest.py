"""Pytest configuration and shared fixtures.

Async tests run through pytest-asyncio in auto mode (see pyproject.toml).
"""
import pytest

from docqa import db
from docqa.documents import SQLiteDocumentStore
from docqa.rag.store_local import LocalVectorStore


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the SQLite layer at a fresh database file."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "test.sqlite")
    db.init_database()
    return db.DB_PATH


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "vector_store.json"


@pytest.fixture
async def local_store(store_path):
    store = LocalVectorStore(store_path)
    await store.load()
    return store


@pytest.fixture
def document_store(temp_db):
    return SQLiteDocumentStore()
