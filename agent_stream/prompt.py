import json
import logging
import re
import time
from typing import TYPE_CHECKING, Any, Literal, Optional

if TYPE_CHECKING:
    from agent_stream.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

QueryClass = Literal["fast", "tool", "complex"]

_SIMPLE_PATTERNS = [
    re.compile(r"^(hi|hello|hey|how are you|what'?s up|good (morning|afternoon|evening)|thank you|thanks)[\s!.]*$"),
    re.compile(r"^(yes|yeah|yep|no|nope|ok|okay|sure|great|awesome|nice)[\s!.]*$"),
    re.compile(r"^(bye|goodbye|see you|talk to you later)[\s!.]*$"),
]
_TOOL_VERBS = ("create", "add", "new")

SIMPLE_SYSTEM = """<|im_start|>system
You are a helpful AI assistant. For simple greetings and casual conversation, use the respondToUser tool to provide friendly responses.

Available tools:
- respondToUser: Provide conversational responses based on internal reasoning

Use this format for tool calls:
THOUGHT: [Your reasoning about what needs to be done]
TOOL_CALL: {"name": "respondToUser", "args": {"query": %(query)s}}
FINAL_ANSWER: [Your response to the user]
<|im_end|>"""

COMPLEX_SYSTEM = """<|im_start|>system
You are a helpful AI assistant with access to productivity tools. Your goal is to help users manage their tasks and provide helpful responses.

When a user asks you to perform an action:
1. First, think about what needs to be done
2. Then, use the appropriate tool(s) to accomplish the task
3. Finally, provide a clear response about what was done

Available tools:
%(tools)s

Use this exact format for tool calls (each on a new line):

THOUGHT: [Your reasoning about what needs to be done]

TOOL_CALL: {"name": "tool_name", "args": {...}}

FINAL_ANSWER: [Your response to the user]

Important: Always put each step (THOUGHT, TOOL_CALL, FINAL_ANSWER) on separate lines with blank lines between them for clarity.

Context from previous conversation:
%(context)s
<|im_end|>"""

USER_TURN = """
<|im_start|>user
%(input)s<|im_end|>
<|im_start|>assistant
"""

NO_CONTEXT = "No previous context available."


def is_simple_query(text: str) -> bool:
    normalized = text.strip().lower()
    return any(p.match(normalized) for p in _SIMPLE_PATTERNS)


def classify_query(text: str) -> QueryClass:
    normalized = text.strip().lower()
    if is_simple_query(normalized):
        return "fast"
    if "task" in normalized and any(verb in normalized for verb in _TOOL_VERBS):
        return "tool"
    return "complex"


def generation_params(query_class: QueryClass) -> dict[str, Any]:
    """Sampling overrides passed to ``ModelAdaptor.stream``."""
    if query_class == "fast":
        return {"max_tokens": 50, "temperature": 0.1}
    if query_class == "tool":
        return {"max_tokens": 100, "temperature": 0.2}
    return {}


def describe_tools(manifest: list[dict]) -> str:
    lines = []
    for tool in manifest:
        params = tool.get("parameters", {}).get("properties", {})
        if params:
            lines.append(f"- {tool['name']}: {tool['description']} Arguments: {json.dumps(params)}")
        else:
            lines.append(f"- {tool['name']}: {tool['description']}")
    return "\n".join(lines) or "- (none)"


class PromptBuilder:
    """Builds ChatML prompts and caches them for a short while.

    Usage:
        builder = PromptBuilder(dispatcher)
        prompt = builder.build("Add a task to call Bob", context=memory.build_context())
    """

    def __init__(
        self,
        dispatcher: Optional["ToolDispatcher"] = None,
        cache_ttl_seconds: float = 300.0,
        max_cache_size: int = 50,
    ):
        self.dispatcher = dispatcher
        self.cache_ttl_seconds = cache_ttl_seconds
        self.max_cache_size = max_cache_size
        self._cache: dict[tuple[str, str, bool], tuple[str, float]] = {}

    def build(self, input: str, context: Optional[str] = None) -> str:
        simple = is_simple_query(input)
        key = (input, context or "", simple)
        now = time.monotonic()

        cached = self._cache.get(key)
        if cached and now - cached[1] < self.cache_ttl_seconds:
            return cached[0]

        if simple:
            system = SIMPLE_SYSTEM % {"query": json.dumps(input)}
        else:
            manifest = self.dispatcher.manifest() if self.dispatcher else []
            system = COMPLEX_SYSTEM % {
                "tools": describe_tools(manifest),
                "context": context or NO_CONTEXT,
            }
        prompt = system + USER_TURN % {"input": input}

        self._cache[key] = (prompt, now)
        if len(self._cache) > self.max_cache_size:
            self._evict(now)
        return prompt

    def _evict(self, now: float) -> None:
        expired = [k for k, (_, ts) in self._cache.items() if now - ts >= self.cache_ttl_seconds]
        for key in expired:
            del self._cache[key]
        # still full: drop the oldest
        while len(self._cache) > self.max_cache_size:
            oldest = min(self._cache, key=lambda k: self._cache[k][1])
            del self._cache[oldest]
        logger.debug("Prompt cache trimmed to %d entries", len(self._cache))

    def clear(self) -> None:
        self._cache.clear()
