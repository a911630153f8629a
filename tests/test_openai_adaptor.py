"""Tests for the OpenAI-compatible completions adaptor."""

import json
from unittest.mock import patch

import httpx
import pytest

from agent_stream.adaptors.openai import OpenAIAdaptor

_RealAsyncClient = httpx.AsyncClient


def sse(*texts, done=True):
    lines = [f"data: {json.dumps({'choices': [{'text': t}]})}" for t in texts]
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


@pytest.fixture
def server():
    """Route the adaptor's HTTP client to an in-process handler."""
    state = {"requests": [], "status": 200, "body": sse("Hello", " world")}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return httpx.Response(state["status"], content=state["body"])

    def make_client(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    with patch("agent_stream.adaptors.openai.httpx.AsyncClient", side_effect=make_client):
        yield state


class TestOpenAIAdaptorInit:
    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            a = OpenAIAdaptor()
        assert a.api_key is None
        assert a.model == "local-model"
        assert a.base_url == "http://localhost:8080/v1"

    def test_env_api_key(self):
        with patch.dict("os.environ", {"OPENAI_API_KEY": "env-key"}):
            assert OpenAIAdaptor().api_key == "env-key"

    def test_trailing_slash_stripped(self):
        assert OpenAIAdaptor(base_url="http://llm:9000/v1/").base_url == "http://llm:9000/v1"


class TestOpenAIStream:
    @pytest.mark.asyncio
    async def test_yields_text_pieces(self, server):
        a = OpenAIAdaptor(api_key="k")
        pieces = [p async for p in a.stream("prompt")]
        assert pieces == ["Hello", " world"]
        assert not a.is_busy

    @pytest.mark.asyncio
    async def test_request_payload(self, server):
        a = OpenAIAdaptor(api_key="secret", model="qwen", base_url="http://llm:9000/v1")
        [p async for p in a.stream("the prompt", max_tokens=50, temperature=0.1, top_k=3)]

        request = server["requests"][0]
        assert str(request.url) == "http://llm:9000/v1/completions"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "model": "qwen",
            "prompt": "the prompt",
            "stream": True,
            "max_tokens": 50,
            "temperature": 0.1,
        }

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, server):
        with patch.dict("os.environ", {}, clear=True):
            a = OpenAIAdaptor()
        [p async for p in a.stream("prompt")]
        assert "Authorization" not in server["requests"][0].headers

    @pytest.mark.asyncio
    async def test_skips_noise_and_empty_choices(self, server):
        server["body"] = (
            b": keep-alive\n\n"
            b'data: {"choices": []}\n\n'
            b'data: {"choices": [{"text": ""}]}\n\n'
            b'data: {"choices": [{"text": "ok"}]}\n\n'
            b"data: [DONE]\n\n"
            b'data: {"choices": [{"text": "after done"}]}\n\n'
        )
        a = OpenAIAdaptor(api_key="k")
        assert [p async for p in a.stream("prompt")] == ["ok"]

    @pytest.mark.asyncio
    async def test_stop_request(self, server):
        server["body"] = sse("a", "b", "c")
        a = OpenAIAdaptor(api_key="k")
        pieces = []
        async for piece in a.stream("prompt"):
            pieces.append(piece)
            a.stop()
        assert pieces == ["a"]

    @pytest.mark.asyncio
    async def test_error_status(self, server):
        server["status"] = 500
        server["body"] = json.dumps({"error": {"message": "model not found"}}).encode()
        a = OpenAIAdaptor(api_key="k")
        with pytest.raises(ValueError, match="Completions API error: model not found"):
            [p async for p in a.stream("prompt")]
        assert not a.is_busy

    @pytest.mark.asyncio
    async def test_error_status_plain_body(self, server):
        server["status"] = 503
        server["body"] = b"upstream unavailable"
        a = OpenAIAdaptor(api_key="k")
        with pytest.raises(ValueError, match="upstream unavailable"):
            [p async for p in a.stream("prompt")]

    @pytest.mark.asyncio
    async def test_error_status_string_error(self, server):
        server["status"] = 400
        server["body"] = b'{"error": "bad prompt"}'
        a = OpenAIAdaptor(api_key="k")
        with pytest.raises(ValueError, match="bad prompt"):
            [p async for p in a.stream("prompt")]
