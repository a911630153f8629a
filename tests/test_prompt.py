import json

import pytest

from agent_stream.capabilities import InMemoryRecordStore, default_tools
from agent_stream.dispatcher import ToolDispatcher
from agent_stream.prompt import (
    NO_CONTEXT,
    PromptBuilder,
    classify_query,
    describe_tools,
    generation_params,
    is_simple_query,
)


@pytest.fixture
def builder():
    return PromptBuilder(ToolDispatcher(default_tools(InMemoryRecordStore())))


class TestClassification:
    @pytest.mark.parametrize("text", ["hi", "Hello!", "  thanks. ", "ok", "good morning", "bye"])
    def test_simple(self, text):
        assert is_simple_query(text)
        assert classify_query(text) == "fast"

    @pytest.mark.parametrize("text", ["hi, add a task", "okay then what", "hello there friend"])
    def test_not_simple(self, text):
        assert not is_simple_query(text)

    def test_tool(self):
        assert classify_query("Add a task to call Bob") == "tool"
        assert classify_query("create new TASK") == "tool"

    def test_complex(self):
        assert classify_query("What should I focus on this week?") == "complex"
        assert classify_query("list my tasks") == "complex"

    def test_generation_params(self):
        assert generation_params("fast") == {"max_tokens": 50, "temperature": 0.1}
        assert generation_params("tool") == {"max_tokens": 100, "temperature": 0.2}
        assert generation_params("complex") == {}


class TestBuild:
    def test_simple_prompt(self, builder):
        prompt = builder.build("hello")
        assert prompt.startswith("<|im_start|>system\n")
        assert 'TOOL_CALL: {"name": "respondToUser", "args": {"query": "hello"}}' in prompt
        assert prompt.endswith("<|im_start|>user\nhello<|im_end|>\n<|im_start|>assistant\n")

    def test_simple_prompt_embeds_query_as_json(self, builder):
        prompt = builder.build("Thanks!")
        assert '{"query": %s}' % json.dumps("Thanks!") in prompt

    def test_complex_prompt_lists_tools_and_context(self, builder):
        prompt = builder.build("Plan my week", context="## Recent Conversation:\nuser: hi")
        assert "- createTask: Create a new task" in prompt
        assert "- manageProductivity:" in prompt
        assert "Context from previous conversation:\n## Recent Conversation:\nuser: hi" in prompt
        assert prompt.endswith("<|im_start|>user\nPlan my week<|im_end|>\n<|im_start|>assistant\n")

    def test_missing_context_placeholder(self, builder):
        assert NO_CONTEXT in builder.build("Plan my week")

    def test_without_dispatcher(self):
        assert "- (none)" in PromptBuilder().build("Plan my week")


class TestCache:
    def test_cached_prompt_reused(self, builder):
        first = builder.build("Plan my week")
        builder.dispatcher = None
        assert builder.build("Plan my week") is first

    def test_context_is_part_of_key(self, builder):
        assert builder.build("Plan my week", "a") != builder.build("Plan my week", "b")

    def test_expired_entries_rebuilt(self, builder):
        builder.cache_ttl_seconds = 0
        first = builder.build("Plan my week")
        builder.dispatcher = None
        assert builder.build("Plan my week") != first

    def test_size_is_bounded(self):
        builder = PromptBuilder(max_cache_size=3)
        for i in range(10):
            builder.build(f"question {i}")
        assert len(builder._cache) == 3
        assert ("question 9", "", False) in builder._cache

    def test_clear(self, builder):
        builder.build("hello")
        builder.clear()
        assert builder._cache == {}


def test_describe_tools_without_parameters():
    manifest = [{"name": "ping", "description": "Pings.", "parameters": {"type": "object", "properties": {}}}]
    assert describe_tools(manifest) == "- ping: Pings."
