"""Text extraction for uploaded documents.

Binary formats (PDF, DOCX) are out of scope: only plain text and markdown are
turned into text here. Markdown YAML front matter is parsed and removed from
the indexed text.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog
import yaml

from docqa.errors import UnsupportedMediaType

logger = structlog.get_logger()

PLAIN_TEXT_TYPES = {"text/plain", "text/csv"}
MARKDOWN_TYPES = {"text/markdown", "text/x-markdown"}

EXTENSION_TYPES = {
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
}

# YAML front matter, only at the very start of a file
FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)


@dataclass
class ExtractedText:
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def guess_media_type(name: str, declared: Optional[str] = None) -> str:
    """Declared type unless it is missing or generic, else from the extension."""
    if declared and declared not in ("application/octet-stream", ""):
        return declared.split(";")[0].strip().lower()
    for extension, media_type in EXTENSION_TYPES.items():
        if name.lower().endswith(extension):
            return media_type
    return declared or "application/octet-stream"


def parse_frontmatter(content: str):
    """Extract YAML front matter from markdown content.

    Returns:
        Tuple of (frontmatter_dict, content_without_frontmatter)
    """
    match = FRONTMATTER_PATTERN.match(content)

    if not match:
        return {}, content

    yaml_content = match.group(1)
    try:
        frontmatter = yaml.safe_load(yaml_content)
        if not isinstance(frontmatter, dict):
            frontmatter = {}
    except yaml.YAMLError as e:
        logger.warning(
            "frontmatter_parse_error",
            error=str(e),
            yaml_preview=yaml_content[:100],
        )
        frontmatter = {}

    return frontmatter, content[match.end():]


def _decode(data: bytes) -> str:
    text = data.decode("utf-8", errors="replace")
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\x00", "")


def extract_text(data: bytes, media_type: str, name: str = None) -> ExtractedText:
    """Turn uploaded bytes into plain text.

    Raises:
        UnsupportedMediaType: For anything but plain text or markdown
    """
    if media_type in PLAIN_TEXT_TYPES:
        text = _decode(data)
        metadata = {}
    elif media_type in MARKDOWN_TYPES:
        frontmatter, text = parse_frontmatter(_decode(data))
        metadata = {
            key: value.isoformat() if hasattr(value, "isoformat") else value
            for key, value in frontmatter.items()
            if key in ("title", "tags", "created", "updated", "author")
        }
    else:
        raise UnsupportedMediaType(f"Unsupported file type: {media_type}")

    logger.info(
        "text_extracted",
        name=name,
        media_type=media_type,
        bytes=len(data),
        text_length=len(text),
    )
    return ExtractedText(text=text, metadata=metadata)


def categorize_document(file_name: str) -> str:
    """Coarse category from keywords in the file name."""
    name = file_name.lower()

    if "manual" in name:
        return "manual"
    if "spec" in name or "field" in name:
        return "specification"
    if "guide" in name or "process" in name:
        return "guide"
    return "reference"
