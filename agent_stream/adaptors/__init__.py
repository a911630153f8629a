"""Generation adaptors for agent-stream.

Each adaptor implements ModelAdaptor.stream for one generation backend.
"""

from agent_stream.adaptors.ollama import OllamaAdaptor
from agent_stream.adaptors.openai import OpenAIAdaptor

__all__ = ["OllamaAdaptor", "OpenAIAdaptor"]
