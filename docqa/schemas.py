"""Pydantic models for every payload that crosses an external boundary.

Responses from model backends, similarity RPC rows and the persisted chunk
snapshot are validated here so the rest of the code only sees typed values.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Ollama

class OllamaEmbeddingResponse(BaseModel):
    embedding: List[float]


class OllamaMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class OllamaChatChunk(BaseModel):
    """A non-streaming response or one NDJSON line of a streamed response."""

    message: Optional[OllamaMessage] = None
    done: bool = False
    error: Optional[str] = None

    @property
    def content(self) -> str:
        return self.message.content if self.message else ""


class OllamaModel(BaseModel):
    name: str


class OllamaTags(BaseModel):
    models: List[OllamaModel] = Field(default_factory=list)


# OpenAI-compatible

class OpenAIEmbeddingItem(BaseModel):
    embedding: List[float]
    index: int = 0


class OpenAIEmbeddingResponse(BaseModel):
    data: List[OpenAIEmbeddingItem] = Field(min_length=1)


class OpenAIChatMessage(BaseModel):
    role: str = "assistant"
    content: Optional[str] = None


class OpenAIChatChoice(BaseModel):
    message: OpenAIChatMessage


class OpenAIChatResponse(BaseModel):
    choices: List[OpenAIChatChoice] = Field(min_length=1)

    @property
    def content(self) -> str:
        return self.choices[0].message.content or ""


class OpenAIDelta(BaseModel):
    content: Optional[str] = None


class OpenAIStreamChoice(BaseModel):
    delta: OpenAIDelta = Field(default_factory=OpenAIDelta)
    finish_reason: Optional[str] = None


class OpenAIStreamChunk(BaseModel):
    choices: List[OpenAIStreamChoice] = Field(default_factory=list)

    @property
    def content(self) -> str:
        return "".join(c.delta.content or "" for c in self.choices)


# Vector stores

class SimilarityRow(BaseModel):
    """One row returned by the search_documents similarity RPC."""

    content: str
    document_name: str
    similarity: float
    document_id: Optional[str] = None
    chunk_index: Optional[int] = None


class PersistedChunk(BaseModel):
    """Durable form of a chunk in the local vector store snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    document_id: str = Field(alias="documentId")
    content: str
    embedding: List[float]
    chunk_index: int = Field(alias="chunkIndex")
    document_name: str = Field(alias="documentName")
