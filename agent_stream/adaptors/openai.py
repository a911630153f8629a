"""OpenAI-compatible completions adaptor for agent-stream."""

import json
import logging
import os
from typing import AsyncIterator, Optional

import httpx

from agent_stream.model import ModelAdaptor

logger = logging.getLogger(__name__)


class OpenAIAdaptor(ModelAdaptor):
    """Streams from an OpenAI-compatible ``/completions`` endpoint.

    Works with any server that speaks the legacy completions API over
    server-sent events, e.g. a local llama.cpp or vLLM server.

    Args:
        api_key: API key. Falls back to OPENAI_API_KEY; local servers usually
            don't need one.
        model: Model name sent with each request.
        base_url: Base URL for the API (default: http://localhost:8080/v1).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "local-model",
        base_url: Optional[str] = None,
        timeout: float = 60.0,
    ):
        super().__init__()
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.model = model
        self.base_url = (base_url or "http://localhost:8080/v1").rstrip("/")
        self.timeout = timeout
        self.is_busy = False

    async def stream(self, prompt: str, **kwargs) -> AsyncIterator[str]:
        """Yield text pieces as the server emits them.

        Raises:
            ValueError: If the server answers with an error status.
            httpx.HTTPError: If the request fails.
        """
        payload = {"model": self.model, "prompt": prompt, "stream": True}
        for key in ("max_tokens", "temperature", "top_p", "stop"):
            if key in kwargs:
                payload[key] = kwargs[key]

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        self.stop_requested = False
        self.is_busy = True
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST", f"{self.base_url}/completions", json=payload, headers=headers
                ) as response:
                    if response.status_code != 200:
                        body = await response.aread()
                        raise ValueError(f"Completions API error: {self._error_message(body)}")

                    async for line in response.aiter_lines():
                        if self.stop_requested:
                            logger.debug("Generation stopped by request")
                            break
                        piece = self._parse_line(line)
                        if piece is None:
                            continue
                        if piece is _DONE:
                            break
                        yield piece
        finally:
            self.is_busy = False

    def _parse_line(self, line: str):
        line = line.strip()
        if not line.startswith("data:"):
            return None
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return _DONE
        event = json.loads(data)
        choices = event.get("choices") or []
        if not choices:
            return None
        return choices[0].get("text") or None

    def _error_message(self, body: bytes) -> str:
        text = body.decode("utf-8", errors="replace")
        try:
            error = json.loads(text).get("error")
        except (ValueError, AttributeError):
            return text or "Unknown error"
        if isinstance(error, dict):
            return error.get("message", "Unknown error")
        return str(error) if error else "Unknown error"


_DONE = object()
