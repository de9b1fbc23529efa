"""HTTP clients for the model backends (Ollama and OpenAI-compatible APIs).

The clients speak the wire protocol only. They raise httpx errors for
transport and status failures and ValueError (pydantic's ValidationError is
one) for malformed payloads; callers translate those into docqa errors.
"""
import json
from typing import AsyncIterator, Dict, List, Optional

import httpx
import structlog

from docqa import config
from docqa.schemas import (
    OllamaChatChunk,
    OllamaEmbeddingResponse,
    OllamaTags,
    OpenAIChatResponse,
    OpenAIEmbeddingResponse,
    OpenAIStreamChunk,
)

logger = structlog.get_logger()


async def _raise_for_status(response: httpx.Response) -> None:
    """raise_for_status that works on streamed responses too."""
    if response.is_error:
        await response.aread()
        response.raise_for_status()


class OllamaClient:
    """Async client for interacting with Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.REQUEST_TIMEOUT)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout, transport=self.transport
        )

    @staticmethod
    def _chat_payload(
        messages: List[Dict[str, str]],
        model: str,
        stream: bool,
        temperature: Optional[float],
        top_p: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict:
        options = {}
        if temperature is not None:
            options["temperature"] = temperature
        if top_p is not None:
            options["top_p"] = top_p
        if max_tokens is not None:
            options["num_predict"] = max_tokens

        payload = {"model": model, "messages": messages, "stream": stream}
        if options:
            payload["options"] = options
        return payload

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a non-streaming chat completion request to Ollama.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature (0.0-2.0)
            top_p: Nucleus sampling cutoff
            max_tokens: Maximum number of tokens to generate

        Returns:
            The assistant message content

        Raises:
            httpx.HTTPError: On API errors
            ValueError: If the response body is malformed or reports an error
        """
        model = model or config.CHAT_MODEL
        payload = self._chat_payload(
            messages, model, False, temperature, top_p, max_tokens
        )

        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=model,
                    message_count=len(messages),
                    stream=False,
                )

                response = await client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()

                data = OllamaChatChunk.model_validate_json(response.content)
                if data.error:
                    raise ValueError(f"Ollama reported an error: {data.error}")

                logger.info(
                    "ollama_chat_response",
                    model=model,
                    response_length=len(data.content),
                )

                return data.content

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def chat_stream(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream a chat completion as text fragments.

        Ollama answers with one JSON object per line; the last one carries
        done=true. Closing the generator early closes the HTTP stream.

        Yields:
            Non-empty content fragments in arrival order

        Raises:
            httpx.HTTPError: On API errors
            ValueError: On a malformed line, an error line, or a stream that
                ends before the done signal
        """
        model = model or config.CHAT_MODEL
        payload = self._chat_payload(
            messages, model, True, temperature, top_p, max_tokens
        )

        logger.info(
            "ollama_chat_request",
            model=model,
            message_count=len(messages),
            stream=True,
        )

        async with self._client() as client:
            async with client.stream(
                "POST", f"{self.base_url}/api/chat", json=payload
            ) as response:
                await _raise_for_status(response)

                fragments = 0
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue

                    data = OllamaChatChunk.model_validate_json(line)
                    if data.error:
                        raise ValueError(f"Ollama reported an error: {data.error}")

                    if data.content:
                        fragments += 1
                        yield data.content

                    if data.done:
                        logger.info(
                            "ollama_chat_stream_completed",
                            model=model,
                            fragments=fragments,
                        )
                        return

        raise ValueError("Ollama stream ended before the done signal")

    async def embeddings(
        self,
        prompt: str,
        model: str = None,
    ) -> List[float]:
        """Generate embeddings for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Embedding vector

        Raises:
            httpx.HTTPError: On API errors
            ValueError: If the response body is malformed
        """
        model = model or config.EMBEDDING_MODEL

        payload = {
            "model": model,
            "prompt": prompt,
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    prompt_length=len(prompt),
                )

                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json=payload,
                )
                response.raise_for_status()

                data = OllamaEmbeddingResponse.model_validate_json(response.content)

                logger.debug(
                    "ollama_embedding_response",
                    model=model,
                    dimension=len(data.embedding),
                )

                return data.embedding

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = OllamaTags.model_validate_json(response.content)
                return [m.name for m in data.models]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise


class OpenAIClient:
    """Async client for OpenAI-compatible chat and embedding endpoints."""

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a non-streaming chat completion request.

        Raises:
            httpx.HTTPError: On API errors
            ValueError: If the response body is malformed
        """
        model = model or config.OPENAI_CHAT_MODEL
        payload = self._chat_payload(messages, model, False, temperature, top_p, max_tokens)

        try:
            async with self._client() as client:
                logger.info(
                    "openai_chat_request",
                    model=model,
                    message_count=len(messages),
                    stream=False,
                )
                response = await client.post(f"{self.base_url}/chat/completions", json=payload)
                response.raise_for_status()

                data = OpenAIChatResponse.model_validate_json(response.content)
                logger.info(
                    "openai_chat_response",
                    model=model,
                    response_length=len(data.content),
                )
                return data.content

        except httpx.HTTPError as e:
            logger.error(
                "openai_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def chat_stream(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream a chat completion delivered as server-sent events.

        Yields:
            Non-empty content fragments in arrival order

        Raises:
            httpx.HTTPError: On API errors
            ValueError: On a malformed event or a stream without [DONE]
        """
        model = model or config.OPENAI_CHAT_MODEL
        payload = self._chat_payload(messages, model, True, temperature, top_p, max_tokens)

        logger.info(
            "openai_chat_request",
            model=model,
            message_count=len(messages),
            stream=True,
        )

        async with self._client() as client:
            async with client.stream(
                "POST", f"{self.base_url}/chat/completions", json=payload
            ) as response:
                await _raise_for_status(response)

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue

                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        return

                    chunk = OpenAIStreamChunk.model_validate_json(data)
                    if chunk.content:
                        yield chunk.content

        raise ValueError("OpenAI stream ended before the [DONE] event")

    async def embeddings(self, text: str, model: str = None) -> List[float]:
        """Embed a single text.

        Raises:
            httpx.HTTPError: On API errors
            ValueError: If the response body is malformed
        """
        model = model or config.OPENAI_EMBEDDING_MODEL

        try:
            async with self._client() as client:
                logger.debug("openai_embedding_request", model=model, text_length=len(text))
                response = await client.post(
                    f"{self.base_url}/embeddings",
                    json={"model": model, "input": text},
                )
                response.raise_for_status()
                data = OpenAIEmbeddingResponse.model_validate_json(response.content)
                return data.data[0].embedding

        except httpx.HTTPError as e:
            logger.error("openai_embedding_error", error=str(e))
            raise

    @staticmethod
    def _chat_payload(
        messages: List[Dict[str, str]],
        model: str,
        stream: bool,
        temperature: Optional[float],
        top_p: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict:
        payload = {"model": model, "messages": messages, "stream": stream}
        if temperature is not None:
            payload["temperature"] = temperature
        if top_p is not None:
            payload["top_p"] = top_p
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload


def describe_http_error(error: httpx.HTTPError) -> Dict:
    """Status code and body of a failed request, for error details."""
    if not isinstance(error, httpx.HTTPStatusError):
        return {"status_code": None, "detail": str(error) or type(error).__name__}

    response = error.response
    try:
        detail = response.text
    except httpx.ResponseNotRead:
        detail = response.reason_phrase
    try:
        body = json.loads(detail)
        if isinstance(body, dict) and "error" in body:
            detail = body["error"] if isinstance(body["error"], str) else json.dumps(body["error"])
    except ValueError:
        pass
    return {"status_code": response.status_code, "detail": detail}
