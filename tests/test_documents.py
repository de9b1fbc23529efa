"""Tests for docqa/db.py and docqa/documents.py"""
import sqlite3
from unittest.mock import patch

import pytest

from docqa import db
from docqa.documents import SQLiteDocumentStore
from docqa.errors import StoreReadFailed, StoreWriteFailed
from docqa.rag.models import Document, DocumentStatus


def make_document(document_id="doc1", owner_id=None, **kwargs) -> Document:
    return Document(
        id=document_id,
        name=kwargs.pop("name", "manual.txt"),
        media_type="text/plain",
        size=5,
        content="hello",
        owner_id=owner_id,
        **kwargs,
    )


async def test_save_and_get_round_trip(document_store):
    await document_store.save(make_document(category="manual"))

    loaded = await document_store.get("doc1")

    assert loaded.name == "manual.txt"
    assert loaded.content == "hello"
    assert loaded.category == "manual"
    assert loaded.status == DocumentStatus.UPLOADING


async def test_get_missing_returns_none(document_store):
    assert await document_store.get("missing") is None


async def test_save_overwrites(document_store):
    await document_store.save(make_document())
    await document_store.save(make_document(name="renamed.txt"))

    assert (await document_store.get("doc1")).name == "renamed.txt"
    assert len(await document_store.list()) == 1


async def test_status_update_is_idempotent(document_store):
    await document_store.save(make_document())

    assert await document_store.update_status("doc1", "indexed") is True
    assert await document_store.update_status("doc1", "indexed") is False
    assert (await document_store.get("doc1")).status == DocumentStatus.INDEXED


async def test_error_status_keeps_message(document_store):
    await document_store.save(make_document())

    await document_store.update_status("doc1", "error", error="embedding failed")

    loaded = await document_store.get("doc1")
    assert loaded.status == DocumentStatus.ERROR
    assert loaded.error == "embedding failed"


async def test_list_filters_by_owner(document_store):
    await document_store.save(make_document("a", owner_id="alice"))
    await document_store.save(make_document("b", owner_id="bob"))

    assert [d.id for d in await document_store.list("alice")] == ["a"]
    assert {d.id for d in await document_store.list()} == {"a", "b"}


async def test_delete(document_store):
    await document_store.save(make_document())

    assert await document_store.delete("doc1") is True
    assert await document_store.delete("doc1") is False


async def test_sqlite_errors_translated(document_store):
    with patch.object(db, "get_document", side_effect=sqlite3.OperationalError("locked")):
        with pytest.raises(StoreReadFailed):
            await document_store.get("doc1")

    with patch.object(db, "update_document_status", side_effect=sqlite3.OperationalError("locked")):
        with pytest.raises(StoreWriteFailed):
            await document_store.update_status("doc1", "indexed")


def test_init_database_is_idempotent(temp_db):
    db.init_database()
    db.init_database()

    assert SQLiteDocumentStore(initialize=False) is not None


def test_messages_are_ordered_and_cascade(temp_db):
    db.create_session("s1", "title")
    db.add_message("m1", "s1", "user", "question")
    db.add_message("m2", "s1", "assistant", "answer", sources=[{"documentName": "a.txt"}])
    db.add_message("m3", "s1", "user", "follow-up")

    assert [m["id"] for m in db.get_messages("s1")] == ["m1", "m2", "m3"]
    assert [m["id"] for m in db.get_recent_messages("s1", 2)] == ["m2", "m3"]
    assert db.get_messages("s1")[1]["sources"] == [{"documentName": "a.txt"}]

    assert db.delete_session("s1") is True
    assert db.get_messages("s1") == []
