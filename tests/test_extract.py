"""Tests for docqa/rag/extract.py"""
import pytest

from docqa.errors import UnsupportedMediaType
from docqa.rag.extract import categorize_document, extract_text, guess_media_type, parse_frontmatter


def test_plain_text_strips_nul_bytes():
    extracted = extract_text(b"hello\x00 world", "text/plain")
    assert extracted.text == "hello world"


def test_invalid_utf8_is_replaced():
    extracted = extract_text(b"caf\xe9", "text/plain")
    assert extracted.text == "caf\ufffd"


def test_markdown_front_matter_removed():
    data = b"---\ntitle: Pump Manual\ntags: [pumps]\n---\n# Intro\nBody text\n"

    extracted = extract_text(data, "text/markdown")

    assert extracted.text == "# Intro\nBody text\n"
    assert extracted.metadata == {"title": "Pump Manual", "tags": ["pumps"]}


def test_markdown_with_broken_front_matter_keeps_body():
    frontmatter, body = parse_frontmatter("---\ntitle: [unclosed\n---\nBody\n")

    assert frontmatter == {}
    assert body == "Body\n"


def test_unsupported_media_type():
    with pytest.raises(UnsupportedMediaType):
        extract_text(b"%PDF-1.7", "application/pdf")


@pytest.mark.parametrize("name,declared,expected", [
    ("notes.md", None, "text/markdown"),
    ("notes.md", "application/octet-stream", "text/markdown"),
    ("a.txt", "text/plain; charset=utf-8", "text/plain"),
    ("report.pdf", "application/pdf", "application/pdf"),
    ("blob", None, "application/octet-stream"),
])
def test_guess_media_type(name, declared, expected):
    assert guess_media_type(name, declared) == expected


@pytest.mark.parametrize("name,category", [
    ("Pump_Manual.pdf", "manual"),
    ("field-notes.txt", "specification"),
    ("API spec v2.md", "specification"),
    ("onboarding guide.txt", "guide"),
    ("release process.md", "guide"),
    ("notes.txt", "reference"),
])
def test_categorize_document(name, category):
    assert categorize_document(name) == category
