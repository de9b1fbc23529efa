"""Answer synthesis: grounded prompt in, streamed or complete answer out.

Streaming is exposed as an AnswerStream, an async iterator of text fragments
bound to one in-progress assistant message. Each fragment is appended to the
message as it arrives; when the backend signals completion, the consumer
cancels, or the backend fails, the message is finalised and keeps whatever
text it already received.
"""
import asyncio
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import AsyncIterator, Dict, List, Optional

import httpx
import structlog

from docqa import config
from docqa.errors import InvalidConfiguration, SynthesisFailed
from docqa.llm_client import OllamaClient, OpenAIClient, describe_http_error
from docqa.rag.models import Conversation, Message, RetrievalResult
from docqa.rag.prompt import build_messages, build_system_prompt, select_sources
from docqa.rag.retriever import Retriever

logger = structlog.get_logger()

_END = object()


class ChatBackend(ABC):
    """A language model that completes a list of chat messages."""

    model: str

    @abstractmethod
    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """Return the full response text.

        Raises:
            SynthesisFailed: On any backend error
        """

    @abstractmethod
    def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        """Yield response fragments; concatenated they form the full response.

        Raises:
            SynthesisFailed: On any backend error or malformed stream
        """


def _translate(error: Exception, model: str) -> SynthesisFailed:
    if isinstance(error, httpx.HTTPError):
        return SynthesisFailed(f"Chat request to {model} failed", **describe_http_error(error))
    return SynthesisFailed(f"Malformed response from {model}", detail=str(error))


class _ClientChatBackend(ChatBackend):
    """Adapter from an Ollama/OpenAI client to the ChatBackend interface."""

    def __init__(
        self,
        client,
        model: str,
        temperature: float = None,
        top_p: float = None,
        max_tokens: int = None,
    ):
        self.client = client
        self.model = model
        self.temperature = config.CHAT_TEMPERATURE if temperature is None else temperature
        self.top_p = config.CHAT_TOP_P if top_p is None else top_p
        self.max_tokens = max_tokens or config.MAX_OUTPUT_TOKENS

    def _check_ready(self) -> None:
        """Raise SynthesisFailed if the backend cannot be called; no check by default."""

    def _options(self) -> Dict:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
        }

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        self._check_ready()
        try:
            return await self.client.chat(messages, **self._options())
        except (httpx.HTTPError, ValueError) as e:
            raise _translate(e, self.model) from e

    async def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        self._check_ready()
        try:
            async with aclosing(self.client.chat_stream(messages, **self._options())) as fragments:
                async for fragment in fragments:
                    yield fragment
        except (httpx.HTTPError, ValueError) as e:
            raise _translate(e, self.model) from e


class OllamaChatBackend(_ClientChatBackend):
    def __init__(self, client: Optional[OllamaClient] = None, model: str = None, **options):
        super().__init__(client or OllamaClient(), model or config.CHAT_MODEL, **options)


class OpenAIChatBackend(_ClientChatBackend):
    def __init__(self, client: Optional[OpenAIClient] = None, model: str = None, **options):
        super().__init__(client or OpenAIClient(), model or config.OPENAI_CHAT_MODEL, **options)

    def _check_ready(self) -> None:
        if not self.client.api_key:
            raise SynthesisFailed("OpenAI API key not configured")


def create_chat_backend(kind: str = None) -> ChatBackend:
    kind = (kind or config.CHAT_PROVIDER).lower()
    if kind == "ollama":
        return OllamaChatBackend()
    if kind == "openai":
        return OpenAIChatBackend()
    raise InvalidConfiguration(f"Unknown chat provider: {kind}")


class AnswerStream:
    """Async iterator of fragments filling one streaming assistant message.

    The fragment being awaited is pulled in its own task so that cancel()
    can stop it from another task; the consumer then sees a normal end of
    iteration.
    """

    def __init__(self, message: Message, fragments: AsyncIterator[str]):
        self.message = message
        self._fragments = fragments
        self._pending: Optional[asyncio.Task] = None
        self.cancelled = False

    @property
    def sources(self) -> List[RetrievalResult]:
        return self.message.sources

    def __aiter__(self) -> "AnswerStream":
        return self

    async def _pull(self):
        try:
            return await self._fragments.__anext__()
        except StopAsyncIteration:
            return _END

    async def __anext__(self) -> str:
        if not self.message.streaming:
            raise StopAsyncIteration

        self._pending = asyncio.ensure_future(self._pull())
        try:
            fragment = await self._pending
        except asyncio.CancelledError:
            if self.cancelled:
                # Stopped by cancel(), not by cancellation of the consumer
                self._finish("cancelled")
                raise StopAsyncIteration
            self.cancelled = True
            self._finish("cancelled")
            raise
        except Exception as e:
            self._finish("failed", error=str(e))
            raise
        finally:
            self._pending = None

        if not self.message.streaming:
            # cancel() finished the message while this fragment was in flight
            raise StopAsyncIteration
        if fragment is _END:
            self._finish("completed")
            raise StopAsyncIteration

        self.message.append_fragment(fragment)
        return fragment

    async def cancel(self) -> None:
        """Stop consuming fragments; text received so far is kept.

        Safe to call from another task while a fragment is being awaited.
        """
        if not self.message.streaming:
            return
        self.cancelled = True

        pending = self._pending
        if pending is not None:
            pending.cancel()
            await asyncio.wait({pending})
        await self._fragments.aclose()
        self._finish("cancelled")

    async def collect(self) -> Message:
        """Consume the rest of the stream and return the finished message."""
        async for _ in self:
            pass
        return self.message

    def _finish(self, outcome: str, **fields) -> None:
        if not self.message.streaming:
            return
        self.message.finish()
        logger.info(
            "answer_stream_finished",
            message_id=self.message.id,
            outcome=outcome,
            response_length=len(self.message.content),
            **fields,
        )


class AnswerSynthesizer:
    """Retrieves context for a question and asks the chat backend to answer it."""

    def __init__(
        self,
        backend: ChatBackend,
        retriever: Retriever,
        history_window: int = None,
        max_context_chars: int = None,
    ):
        self.backend = backend
        self.retriever = retriever
        self.history_window = (
            config.CONTEXT_WINDOW_SIZE if history_window is None else history_window
        )
        self.max_context_chars = max_context_chars or config.MAX_CONTEXT_CHARS

    async def _prepare(
        self,
        question: str,
        conversation: Conversation,
        owner_id: Optional[str],
    ):
        history = conversation.history(self.history_window)
        conversation.append(Message(role="user", content=question))

        retrieved = await self.retriever.retrieve(question, owner_id=owner_id)
        # Only chunks that made it into the prompt are cited as sources
        results = select_sources(retrieved, max_chars=self.max_context_chars)
        system_prompt = build_system_prompt(retrieved, max_chars=self.max_context_chars)
        messages = build_messages(system_prompt, history, question)

        logger.info(
            "prompt_assembled",
            conversation_id=conversation.id,
            retrieved=len(retrieved),
            sources=len(results),
            history_messages=len(history),
        )
        return results, messages

    async def answer(
        self,
        question: str,
        conversation: Conversation,
        owner_id: Optional[str] = None,
    ) -> Message:
        """Answer without streaming and append the assistant message.

        Raises:
            EmbeddingUnavailable, EmbeddingFailed: If the question cannot be embedded
            SynthesisFailed: If the chat backend fails
        """
        results, messages = await self._prepare(question, conversation, owner_id)

        content = await self.backend.complete(messages)

        message = conversation.append(
            Message(role="assistant", content=content, sources=list(results))
        )
        logger.info(
            "answer_synthesized",
            conversation_id=conversation.id,
            response_length=len(content),
            sources=len(results),
        )
        return message

    async def stream_answer(
        self,
        question: str,
        conversation: Conversation,
        owner_id: Optional[str] = None,
    ) -> AnswerStream:
        """Start a streamed answer.

        The returned stream's message is already appended to the conversation
        and carries the sources; its content grows as fragments are consumed.
        """
        results, messages = await self._prepare(question, conversation, owner_id)

        message = conversation.append(
            Message(role="assistant", content="", sources=list(results), streaming=True)
        )
        return AnswerStream(message, self.backend.stream(messages))
