import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from agent_stream.config import DispatcherConfig
from agent_stream.dispatcher import ToolDispatcher, sanitize_args
from agent_stream.exceptions import (
    ToolExecutionError,
    ToolNotFound,
    ToolTimeoutError,
    ToolValidationError,
)
from agent_stream.schema import ArgumentSchema, EnumField, StringField
from agent_stream.tools import FunctionTool, Tool


# --- Test fixtures ---


class TaskTool(Tool):
    name = "createTask"
    description = "Create a task"
    args_schema = ArgumentSchema(
        fields={
            "title": StringField(required=True),
            "priority": EnumField(required=True, values=["high", "medium", "low"]),
        }
    )

    def __init__(self):
        self.calls = 0

    async def execute(self, args):
        self.calls += 1
        return {"task": {"title": args["title"]}}


class SlowTool(Tool):
    name = "slow"
    description = "Never finishes in time"

    def __init__(self):
        self.calls = 0

    async def execute(self, args):
        self.calls += 1
        await asyncio.sleep(1)
        return {}


class FlakyTool(Tool):
    name = "flaky"
    description = "Fails a few times, then works"

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def execute(self, args):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("network unreachable")
        return {"message": "ok"}


class PickyTool(Tool):
    name = "picky"
    description = "Rejects its input from inside the executor"

    def __init__(self):
        self.calls = 0

    async def execute(self, args):
        self.calls += 1
        raise ToolValidationError("Field \"when\" is in the past", field="when")


def fast_config(**overrides):
    values = {"timeout_seconds": 0.05, "retry_delay_seconds": 0.0}
    values.update(overrides)
    return DispatcherConfig(**values)


# --- Registry ---


class TestRegistry:
    def test_register_and_lookup(self):
        tool = TaskTool()
        dispatcher = ToolDispatcher([tool])
        assert dispatcher.get("createTask") is tool
        assert dispatcher.has_tool("createTask")
        assert dispatcher.names() == ["createTask"]

    def test_duplicate_name_rejected(self):
        dispatcher = ToolDispatcher([TaskTool()])
        with pytest.raises(ValueError, match="already registered"):
            dispatcher.register(TaskTool())

    def test_unknown_tool(self):
        dispatcher = ToolDispatcher([TaskTool()])
        with pytest.raises(ToolNotFound, match="Available tools: createTask"):
            dispatcher.get("nope")

    def test_manifest(self):
        manifest = ToolDispatcher([TaskTool()]).manifest()
        assert manifest[0]["name"] == "createTask"
        assert manifest[0]["parameters"]["required"] == ["title", "priority"]


# --- Execution ---


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_envelope(self):
        dispatcher = ToolDispatcher([TaskTool()])
        result = await dispatcher.execute("createTask", {"title": "x", "priority": "low"})
        assert result["success"] is True
        assert result["execution_time_ms"] >= 0
        assert result["task"] == {"title": "x"}

    @pytest.mark.asyncio
    async def test_schema_gate(self):
        tool = TaskTool()
        dispatcher = ToolDispatcher([tool])
        with pytest.raises(ToolValidationError) as exc_info:
            await dispatcher.execute("createTask", {"title": "x"})
        assert exc_info.value.field == "priority"
        assert tool.calls == 0

    @pytest.mark.asyncio
    async def test_unknown_tool_not_retried(self):
        dispatcher = ToolDispatcher([], fast_config())
        with pytest.raises(ToolNotFound):
            await dispatcher.execute("ghost", {})

    @pytest.mark.asyncio
    async def test_retry_ceiling_on_timeout(self):
        tool = SlowTool()
        dispatcher = ToolDispatcher([tool], fast_config(max_retries=2))
        with pytest.raises(ToolTimeoutError) as exc_info:
            await dispatcher.execute("slow", {})
        assert tool.calls == 3
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        tool = FlakyTool(failures=2)
        dispatcher = ToolDispatcher([tool], fast_config(max_retries=2))
        result = await dispatcher.execute("flaky", {})
        assert result["message"] == "ok"
        assert tool.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_chain_last_error(self):
        tool = FlakyTool(failures=10)
        dispatcher = ToolDispatcher([tool], fast_config(max_retries=1))
        with pytest.raises(ToolExecutionError) as exc_info:
            await dispatcher.execute("flaky", {})
        assert not isinstance(exc_info.value, ToolTimeoutError)
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert tool.calls == 2

    @pytest.mark.asyncio
    async def test_executor_validation_error_not_retried(self):
        tool = PickyTool()
        dispatcher = ToolDispatcher([tool], fast_config())
        with pytest.raises(ToolValidationError):
            await dispatcher.execute("picky", {})
        assert tool.calls == 1

    @pytest.mark.asyncio
    async def test_linear_backoff(self):
        tool = FlakyTool(failures=2)
        dispatcher = ToolDispatcher([tool], DispatcherConfig(retry_delay_seconds=0.5))
        with patch("agent_stream.dispatcher.asyncio.sleep", new=AsyncMock()) as sleep:
            await dispatcher.execute("flaky", {})
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_function_tool(self):
        async def shout(args):
            return {"message": args["text"].upper()}

        tool = FunctionTool(
            "shout",
            "Upper-cases text",
            shout,
            ArgumentSchema(fields={"text": StringField(required=True)}),
        )
        result = await ToolDispatcher([tool]).execute("shout", {"text": "hey"})
        assert result["message"] == "HEY"


# --- Metrics ---


class TestMetrics:
    @pytest.mark.asyncio
    async def test_success_updates_metric(self):
        dispatcher = ToolDispatcher([TaskTool()])
        await dispatcher.execute("createTask", {"title": "x", "priority": "low"})
        metric = dispatcher.metrics()["createTask"]
        assert metric.total_executions == 1
        assert metric.successful_executions == 1
        assert metric.success_rate == 1.0
        assert metric.last_success is not None

    @pytest.mark.asyncio
    async def test_every_attempt_counted(self):
        dispatcher = ToolDispatcher([FlakyTool(failures=1)], fast_config())
        await dispatcher.execute("flaky", {})
        metric = dispatcher.metrics()["flaky"]
        assert metric.total_executions == 2
        assert metric.successful_executions == 1
        assert metric.success_rate == pytest.approx(0.2 * 1 + 0.8 * (0.2 * 0 + 0.8 * 1.0))
        assert metric.last_error == "network unreachable"

    @pytest.mark.asyncio
    async def test_reported_failure_counts_as_failure(self):
        async def partial(args):
            return {"success": False, "message": "1 of 2 operations failed"}

        dispatcher = ToolDispatcher([FunctionTool("batch", "Runs a batch", partial)])
        result = await dispatcher.execute("batch", {})

        assert result["success"] is False
        metric = dispatcher.metrics()["batch"]
        assert metric.total_executions == 1
        assert metric.successful_executions == 0
        assert metric.success_rate == pytest.approx(0.8)
        assert metric.last_error == "1 of 2 operations failed"

    @pytest.mark.asyncio
    async def test_metrics_are_copies(self):
        dispatcher = ToolDispatcher([TaskTool()])
        snapshot = dispatcher.metrics()["createTask"]
        await dispatcher.execute("createTask", {"title": "x", "priority": "low"})
        assert snapshot.total_executions == 0

    @pytest.mark.asyncio
    async def test_suggestions_for_unreliable_tool(self):
        dispatcher = ToolDispatcher([FlakyTool(failures=100)], fast_config(max_retries=4))
        with pytest.raises(ToolExecutionError):
            await dispatcher.execute("flaky", {})
        suggestions = dispatcher.optimization_suggestions()
        assert any("Low reliability" in s for s in suggestions["flaky"])
        assert any("Low success rate" in s for s in suggestions["flaky"])

    def test_stats_empty(self):
        assert ToolDispatcher().stats() == {
            "total_tools": 0,
            "total_executions": 0,
            "avg_reliability": 0.0,
        }

    @pytest.mark.asyncio
    async def test_concurrent_executions(self):
        dispatcher = ToolDispatcher([TaskTool()])
        await asyncio.gather(
            *(dispatcher.execute("createTask", {"title": str(i), "priority": "high"}) for i in range(20))
        )
        assert dispatcher.stats()["total_executions"] == 20


class TestSanitizeArgs:
    def test_redacts_secrets(self):
        args = {"password": "hunter2", "api_token": "abc", "client_secret": "s", "title": "ok"}
        assert sanitize_args(args) == {
            "password": "[REDACTED]",
            "api_token": "[REDACTED]",
            "client_secret": "[REDACTED]",
            "title": "ok",
        }

    def test_truncates_long_strings(self):
        sanitized = sanitize_args({"description": "x" * 150})
        assert sanitized["description"] == "x" * 100 + "... [TRUNCATED]"

    def test_leaves_other_values(self):
        assert sanitize_args({"count": 3, "tags": ["a"]}) == {"count": 3, "tags": ["a"]}
