"""Tests for hook system."""

import asyncio

import pytest

from agent_stream.agent import Agent
from agent_stream.config import DispatcherConfig
from agent_stream.dispatcher import ToolDispatcher
from agent_stream.execution import StepKind
from agent_stream.hooks import (
    AfterToolCallEventData,
    BeforeToolCallEventData,
    BeforeTurnEventData,
    HookEvent,
    HookRegistry,
    HookResponse,
    Middleware,
    OnToolErrorEventData,
)
from agent_stream.memory import MemoryManager
from agent_stream.model import ModelAdaptor
from agent_stream.tools import Tool


# --- Test fixtures ---


class FakeModel(ModelAdaptor):
    """Model that streams a canned response in one piece."""

    def __init__(self, text: str = "FINAL_ANSWER: The answer is 42."):
        super().__init__()
        self.text = text

    async def stream(self, prompt, **kwargs):
        await asyncio.sleep(0)
        yield self.text


class EchoTool(Tool):
    name = "echo"
    description = "Echoes input"

    def __init__(self):
        self.calls = 0

    async def execute(self, args):
        self.calls += 1
        return {"message": f"echo: {args.get('text')}"}


class FailingTool(Tool):
    name = "fail"
    description = "Always fails"

    async def execute(self, args):
        raise RuntimeError("Tool failed!")


TOOL_TURN = 'TOOL_CALL: {"name": "echo", "args": {"text": "hello"}}\nFINAL_ANSWER: Done echoing.'
FAIL_TURN = 'TOOL_CALL: {"name": "fail", "args": {}}\nFINAL_ANSWER: It failed.'


def make_agent(text, tools=None, **kwargs):
    dispatcher = ToolDispatcher(tools or [], DispatcherConfig(max_retries=0))
    return Agent(model=FakeModel(text), dispatcher=dispatcher, memory=MemoryManager(), **kwargs)


# --- HookRegistry tests ---


class TestHookRegistry:
    def test_all_events_registered(self):
        registry = HookRegistry()
        for event in HookEvent:
            assert not registry.has_handlers(event.value)

    def test_register_handler(self):
        registry = HookRegistry()

        async def handler(event):
            pass

        registry.register_handler("before_turn", handler)
        assert registry.has_handlers("before_turn")

    def test_invalid_hook_name(self):
        registry = HookRegistry()
        with pytest.raises(ValueError, match="Invalid hook name"):
            registry.register_handler("before_run", lambda e: None)

    def test_decorator(self):
        registry = HookRegistry()

        @registry.on("on_step")
        async def handler(event):
            pass

        assert registry.has_handlers("on_step")

    def test_clear(self):
        registry = HookRegistry()
        registry.register_handler("after_turn", lambda e: None)
        registry.clear()
        assert not registry.has_handlers("after_turn")

    @pytest.mark.asyncio
    async def test_trigger_returns_first_response(self):
        registry = HookRegistry()
        registry.register_handler("before_tool_call", lambda e: None)
        registry.register_handler("before_tool_call", lambda e: {"action": "skip", "cached_result": {}})
        registry.register_handler("before_tool_call", lambda e: {"action": "other"})

        response = await registry.trigger("before_tool_call", object())
        assert response == HookResponse(action="skip", cached_result={})

    @pytest.mark.asyncio
    async def test_failing_handler_is_logged_not_raised(self, caplog):
        registry = HookRegistry()

        async def boom(event):
            raise RuntimeError("hook broke")

        registry.register_handler("after_turn", boom)
        assert await registry.trigger("after_turn", object()) is None
        assert "hook broke" in caplog.text


class TestHookResponse:
    def test_from_dict_ignores_unknown_keys(self):
        response = HookResponse.from_dict({"action": "skip", "unknown": 1})
        assert response.action == "skip"

    def test_from_none(self):
        assert HookResponse.from_dict(None) is None

    def test_passthrough(self):
        response = HookResponse(action="skip")
        assert HookResponse.from_dict(response) is response


# --- Agent integration ---


class TestAgentHooks:
    @pytest.mark.asyncio
    async def test_lifecycle_order(self):
        agent = make_agent(TOOL_TURN, [EchoTool()])
        order = []

        for event in HookEvent:
            agent.hooks.register_handler(event.value, lambda e, name=event.value: order.append(name))

        await agent.process_query("Echo hello")

        assert order[0] == "before_turn"
        assert order[-1] == "after_turn"
        assert order.index("before_model_call") < order.index("after_model_call")
        assert order.index("before_tool_call") < order.index("after_tool_call")
        assert "on_tool_error" not in order

    @pytest.mark.asyncio
    async def test_before_turn_event_data(self):
        agent = make_agent("FINAL_ANSWER: hi there")
        events = []

        @agent.hook("before_turn")
        async def capture(event):
            events.append(event)

        turn = await agent.process_query("Hello agent")

        assert isinstance(events[0], BeforeTurnEventData)
        assert events[0].agent is agent
        assert events[0].input == "Hello agent"
        assert events[0].turn is turn

    @pytest.mark.asyncio
    async def test_tool_events(self):
        agent = make_agent(TOOL_TURN, [EchoTool()])
        before, after = [], []
        agent.hooks.register_handler("before_tool_call", before.append)
        agent.hooks.register_handler("after_tool_call", after.append)

        await agent.process_query("Echo hello")

        assert isinstance(before[0], BeforeToolCallEventData)
        assert before[0].tool_name == "echo"
        assert before[0].arguments == {"text": "hello"}
        assert before[0].tool_index == 0
        assert isinstance(after[0], AfterToolCallEventData)
        assert after[0].result["success"] is True
        assert after[0].execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_skip_with_cached_result(self):
        tool = EchoTool()
        agent = make_agent(TOOL_TURN, [tool])

        @agent.hook("before_tool_call")
        async def cache(event):
            return {"action": "skip", "cached_result": {"message": "from cache"}}

        turn = await agent.process_query("Echo hello")

        assert tool.calls == 0
        assert turn.tool_results[0].succeeded
        assert turn.tool_results[0].content == "from cache"

    @pytest.mark.asyncio
    async def test_on_tool_error(self):
        agent = make_agent(FAIL_TURN, [FailingTool()])
        errors = []
        agent.hooks.register_handler("on_tool_error", errors.append)

        turn = await agent.process_query("Run the failing tool")

        assert isinstance(errors[0], OnToolErrorEventData)
        assert errors[0].tool_name == "fail"
        assert "Tool failed!" in errors[0].error_message
        assert turn.state == "completed"

    @pytest.mark.asyncio
    async def test_on_step_sees_every_step(self):
        agent = make_agent(TOOL_TURN, [EchoTool()])
        kinds = []

        @agent.hook("on_step")
        async def track(event):
            kinds.append(event.step.kind)

        await agent.process_query("Echo hello")

        assert kinds[0] is StepKind.USER
        assert kinds.count(StepKind.TOOL_CALL) == 1
        assert kinds.count(StepKind.TOOL_RESULT) == 1
        assert kinds.count(StepKind.FINAL_ANSWER) == 1

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_turn(self):
        agent = make_agent("FINAL_ANSWER: still fine")

        @agent.hook("before_model_call")
        async def broken(event):
            raise RuntimeError("oops")

        turn = await agent.process_query("Keep going")
        assert turn.state == "completed"
        assert turn.response == "still fine"

    @pytest.mark.asyncio
    async def test_shared_registry(self):
        hooks = HookRegistry()
        seen = []
        hooks.register_handler("after_turn", lambda e: seen.append(e.turn.state))

        await make_agent("FINAL_ANSWER: one", hooks=hooks).process_query("first")
        await make_agent("FINAL_ANSWER: two", hooks=hooks).process_query("second")

        assert seen == ["completed", "completed"]


# --- Middleware ---


class TestMiddleware:
    @pytest.mark.asyncio
    async def test_middleware_methods_become_handlers(self):
        class Recorder(Middleware):
            def __init__(self):
                self.tools = []
                self.turns = 0

            async def after_tool_call(self, event):
                self.tools.append(event.tool_name)

            async def after_turn(self, event):
                self.turns += 1

        recorder = Recorder()
        agent = make_agent(TOOL_TURN, [EchoTool()], middlewares=[recorder])

        await agent.process_query("Echo hello")

        assert recorder.tools == ["echo"]
        assert recorder.turns == 1

    @pytest.mark.asyncio
    async def test_middleware_can_skip_tools(self):
        class Cache(Middleware):
            async def before_tool_call(self, event):
                return {"action": "skip", "cached_result": {"message": "cached echo"}}

        tool = EchoTool()
        agent = make_agent(TOOL_TURN, [tool], middlewares=[Cache()])
        turn = await agent.process_query("Echo hello")

        assert tool.calls == 0
        assert turn.tool_results[0].content == "cached echo"
