"""Tests for docqa/llm_client.py"""
import json

import httpx
import pytest

from docqa.llm_client import OllamaClient, OpenAIClient, describe_http_error


def ndjson(*objects) -> bytes:
    return "".join(json.dumps(o) + "\n" for o in objects).encode()


def ollama(handler) -> OllamaClient:
    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


def openai(handler) -> OpenAIClient:
    return OpenAIClient(
        api_key="sk-test",
        base_url="https://openai.test/v1",
        transport=httpx.MockTransport(handler),
    )


async def collect(stream):
    return [fragment async for fragment in stream]


class TestOllamaClient:
    async def test_chat_sends_generation_options(self):
        payloads = []

        def handler(request):
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "hi"}, "done": True})

        reply = await ollama(handler).chat(
            [{"role": "user", "content": "hello"}],
            model="llama3.1:8b",
            temperature=0.1,
            top_p=0.9,
            max_tokens=1000,
        )

        assert reply == "hi"
        assert payloads[0]["stream"] is False
        assert payloads[0]["options"] == {"temperature": 0.1, "top_p": 0.9, "num_predict": 1000}

    async def test_chat_error_field_raises(self):
        def handler(request):
            return httpx.Response(200, json={"error": "model not found"})

        with pytest.raises(ValueError):
            await ollama(handler).chat([{"role": "user", "content": "hello"}])

    async def test_stream_yields_fragments(self):
        def handler(request):
            return httpx.Response(200, content=ndjson(
                {"message": {"content": "The "}, "done": False},
                {"message": {"content": "answer"}, "done": False},
                {"message": {"content": ""}, "done": True},
            ))

        fragments = await collect(ollama(handler).chat_stream([{"role": "user", "content": "q"}]))

        assert fragments == ["The ", "answer"]

    async def test_stream_without_done_raises(self):
        def handler(request):
            return httpx.Response(200, content=ndjson({"message": {"content": "partial"}, "done": False}))

        with pytest.raises(ValueError):
            await collect(ollama(handler).chat_stream([{"role": "user", "content": "q"}]))

    async def test_stream_error_line_raises(self):
        def handler(request):
            return httpx.Response(200, content=ndjson(
                {"message": {"content": "a"}, "done": False},
                {"error": "out of memory"},
            ))

        with pytest.raises(ValueError):
            await collect(ollama(handler).chat_stream([{"role": "user", "content": "q"}]))

    async def test_stream_error_status(self):
        def handler(request):
            return httpx.Response(503, text="busy")

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await collect(ollama(handler).chat_stream([{"role": "user", "content": "q"}]))

        assert describe_http_error(exc_info.value) == {"status_code": 503, "detail": "busy"}

    async def test_list_models(self):
        def handler(request):
            return httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}, {"name": "nomic-embed-text:latest"}]})

        assert await ollama(handler).list_models() == ["llama3.1:8b", "nomic-embed-text:latest"]


class TestOpenAIClient:
    async def test_chat(self):
        payloads = []

        def handler(request):
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "42"}}]})

        reply = await openai(handler).chat([{"role": "user", "content": "q"}], max_tokens=1000)

        assert reply == "42"
        assert payloads[0]["max_tokens"] == 1000

    async def test_stream_reads_server_sent_events(self):
        def handler(request):
            body = (
                'data: {"choices": [{"delta": {"content": "The "}}]}\n\n'
                'data: {"choices": [{"delta": {"content": "answer"}}]}\n\n'
                'data: {"choices": [{"delta": {}, "finish_reason": "stop"}]}\n\n'
                "data: [DONE]\n\n"
            )
            return httpx.Response(200, content=body.encode())

        fragments = await collect(openai(handler).chat_stream([{"role": "user", "content": "q"}]))

        assert fragments == ["The ", "answer"]

    async def test_stream_without_done_raises(self):
        def handler(request):
            return httpx.Response(200, content=b'data: {"choices": [{"delta": {"content": "x"}}]}\n\n')

        with pytest.raises(ValueError):
            await collect(openai(handler).chat_stream([{"role": "user", "content": "q"}]))


def test_describe_transport_error():
    error = httpx.ConnectError("connection refused")

    assert describe_http_error(error) == {"status_code": None, "detail": "connection refused"}
