"""Ollama adaptor for agent-stream."""

import logging
from typing import AsyncIterator, Optional

from ollama import AsyncClient

from agent_stream.model import ModelAdaptor

logger = logging.getLogger(__name__)


class OllamaAdaptor(ModelAdaptor):
    """Streams raw completions from an Ollama server using the official SDK.

    The prompt is sent with ``raw=True`` so the server does not wrap it in the
    model's own chat template; the agent's ChatML prompt is used as-is.

    Args:
        model: Model name (default: qwen2.5:0.5b).
        host: Ollama server URL (default: None, SDK defaults to localhost:11434).
        options: Default sampling options merged into every request.
    """

    def __init__(
        self,
        model: str = "qwen2.5:0.5b",
        host: Optional[str] = None,
        options: Optional[dict] = None,
    ):
        super().__init__()
        self.model = model
        self.client = AsyncClient(host=host)
        self.options = options or {}
        self.is_busy = False

    async def stream(self, prompt: str, **kwargs) -> AsyncIterator[str]:
        options = {**self.options, **self._convert_params(kwargs)}
        self.stop_requested = False
        self.is_busy = True
        try:
            chunks = await self.client.generate(
                model=self.model,
                prompt=prompt,
                raw=True,
                stream=True,
                options=options or None,
            )
            async for chunk in chunks:
                if self.stop_requested:
                    logger.debug("Generation stopped by request")
                    break
                piece = chunk["response"]
                if piece:
                    yield piece
                if chunk.get("done"):
                    break
        finally:
            self.is_busy = False

    def _convert_params(self, params: dict) -> dict:
        options = {}
        if "max_tokens" in params:
            options["num_predict"] = params["max_tokens"]
        for key in ("temperature", "top_p", "top_k", "stop"):
            if key in params:
                options[key] = params[key]
        return options
