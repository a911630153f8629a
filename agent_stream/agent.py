import asyncio
import contextlib
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from agent_stream.config import AgentConfig
from agent_stream.dispatcher import ToolDispatcher, sanitize_args
from agent_stream.exceptions import (
    ModelLoading,
    ModelNotLoaded,
    RunawayGenerationDetected,
    SystemBusy,
)
from agent_stream.execution import Step, StepKind, ToolCallRecord, Turn
from agent_stream.formatting import describe_error, describe_result, failure_result
from agent_stream.hooks import (
    AfterModelCallEventData,
    AfterToolCallEventData,
    AfterTurnEventData,
    BeforeModelCallEventData,
    BeforeToolCallEventData,
    BeforeTurnEventData,
    HookEvent,
    HookRegistry,
    OnStepEventData,
    OnToolErrorEventData,
)
from agent_stream.memory import MemoryManager, MemoryMessage
from agent_stream.model import ModelAdaptor
from agent_stream.parser import StreamParser, display_text
from agent_stream.prompt import PromptBuilder, classify_query, generation_params

if TYPE_CHECKING:
    from agent_stream.hooks import Middleware

logger = logging.getLogger(__name__)

Callback = Optional[Callable[..., Any]]


async def _pull(stream) -> Optional[str]:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None


async def _invoke(callback: Callback, *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass(eq=False)
class _TurnRun:
    """Per-turn bookkeeping that callers never see."""

    turn: Turn
    on_token: Callback = None
    on_step: Callback = None
    on_error: Callback = None
    forwarded: set[str] = field(default_factory=set)
    dispatched: set[str] = field(default_factory=set)
    tasks: list[asyncio.Task] = field(default_factory=list)
    stop_reason: Optional[str] = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def stopped(self) -> bool:
        return self.stop_reason is not None

    def stop(self, reason: str) -> None:
        # first reason wins
        if self.stop_reason is None:
            self.stop_reason = reason
        self.stop_event.set()


class Agent:
    def __init__(
        self,
        model: ModelAdaptor,
        dispatcher: ToolDispatcher,
        memory: MemoryManager,
        config: Optional[AgentConfig] = None,
        hooks: Optional[HookRegistry] = None,
        middlewares: Optional[list["Middleware"]] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        name: str = "Agent",
    ):
        self.model = model
        self.dispatcher = dispatcher
        self.memory = memory
        self.config = config or AgentConfig()
        self.parser = StreamParser(self.config.parser)
        self.prompt_builder = prompt_builder or PromptBuilder(dispatcher)
        self.name = name
        self._active: set[_TurnRun] = set()

        # Everything goes through one HookRegistry; middleware is sugar over it
        self.hooks = hooks if hooks is not None else HookRegistry()
        if middlewares:
            self._register_middlewares(middlewares)

    def _register_middlewares(self, middlewares: list["Middleware"]) -> None:
        hook_names = [e.value for e in HookEvent]
        for middleware in middlewares:
            for hook_name in hook_names:
                handler = getattr(middleware, hook_name, None)
                if handler is not None and inspect.iscoroutinefunction(handler):
                    self.hooks.register_handler(hook_name, handler)

    def hook(self, hook_name: str):
        """Decorator for registering hooks directly on the agent.

        Usage:
            @agent.hook('after_tool_call')
            async def log_tool(event):
                print(f"Tool: {event.tool_name}")
        """
        return self.hooks.on(hook_name)

    @property
    def active_turns(self) -> int:
        return len(self._active)

    @property
    def turns(self) -> list[Turn]:
        """Turns currently running, any of which can be passed to ``stop``."""
        return [run.turn for run in self._active]

    def stop(self, turn: Optional[Turn] = None, reason: str = "user") -> None:
        """Stop one turn, or every active turn when ``turn`` is None.

        Only the stopped turn's own generation is closed; other turns keep
        streaming. Tools already running are allowed to finish.
        """
        runs = [run for run in self._active if turn is None or run.turn is turn]
        if not runs:
            return
        for run in runs:
            run.stop(reason)
        logger.info("Stop requested for %d active turn(s): %s", len(runs), reason)

    def run(self, input: str, **kwargs) -> Turn:
        """Run a turn synchronously."""
        return asyncio.run(self.process_query(input, **kwargs))

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    def _preflight(self, input: str) -> None:
        if not input or not input.strip():
            raise ValueError("Input must not be empty")
        if self.model.is_loading:
            raise ModelLoading("Model is currently loading. Please wait.")
        if not self.model.is_loaded:
            raise ModelNotLoaded("Model is not loaded yet. Please wait.")
        if self.model.is_busy or len(self._active) >= self.config.max_concurrent_turns:
            raise SystemBusy("System is busy with another operation.")

    async def process_query(
        self,
        input: str,
        on_token: Callback = None,
        on_step: Callback = None,
        on_error: Callback = None,
        context: Optional[str] = None,
    ) -> Turn:
        """Run one user turn while the model streams.

        ``on_token`` receives the displayable answer so far after every piece,
        ``on_step`` every completed step (tool results arrive as their tools
        finish) and ``on_error`` a generation failure. Each may be a plain
        function or a coroutine function.

        Raises:
            ValueError: empty input.
            ModelLoading, ModelNotLoaded, SystemBusy: before any work starts.
        """
        self._preflight(input)

        run = _TurnRun(Turn(input=input), on_token=on_token, on_step=on_step, on_error=on_error)
        self._active.add(run)
        start = time.perf_counter()
        logger.info("Turn started (%d active)", len(self._active))
        try:
            await self._run_turn(run, context)
        finally:
            self._active.discard(run)

        total_ms = (time.perf_counter() - start) * 1000
        run.turn.metadata["total_time_ms"] = total_ms
        logger.info(
            "Turn %s in %.0fms with %d tool call(s)",
            run.turn.state, total_ms, len(run.turn.tool_calls),
        )
        await self.hooks.trigger("after_turn", AfterTurnEventData(turn=run.turn, total_time_ms=total_ms))
        return run.turn

    async def _run_turn(self, run: _TurnRun, context: Optional[str]) -> None:
        turn = run.turn
        await self.hooks.trigger(
            "before_turn", BeforeTurnEventData(agent=self, input=turn.input, turn=turn)
        )

        memory_context = self.memory.build_context()
        full_context = "\n\n".join(part for part in (context, memory_context) if part)
        prompt = self.prompt_builder.build(turn.input, full_context)
        query_class = classify_query(turn.input)
        params = generation_params(query_class)
        turn.metadata["query_class"] = query_class

        self.memory.add_message(MemoryMessage(role="user", content=turn.input))
        await self._emit(run, Step.user(turn.input))

        await self.hooks.trigger(
            "before_model_call",
            BeforeModelCallEventData(turn=turn, prompt=prompt, params=params),
        )

        buffer = ""
        model_start = time.perf_counter()
        try:
            try:
                buffer = await self._consume(run, prompt, params)
            except Exception as e:
                logger.error("Generation failed: %s", e)
                turn.state = "errored"
                turn.error = e
                run.stop("error")
                await _invoke(run.on_error, e)
                await self._settle(run)
                return

            model_ms = (time.perf_counter() - model_start) * 1000
            turn.metadata["model_time_ms"] = model_ms
            await self.hooks.trigger(
                "after_model_call",
                AfterModelCallEventData(turn=turn, output=buffer, response_time_ms=model_ms),
            )

            await self._settle(run)
        except asyncio.CancelledError:
            # The stream may already be over; running tools still finish
            run.stop("shutdown")
            turn.state = "cancelled"
            turn.stop_reason = run.stop_reason
            await self._settle(run)
            raise

        if run.stopped:
            turn.state = "cancelled"
            turn.stop_reason = run.stop_reason
        else:
            turn.state = "completed"

        if turn.response:
            self.memory.add_message(
                MemoryMessage(
                    role="assistant",
                    content=turn.response,
                    tools_used=[record.tool_name for record in turn.tool_calls],
                )
            )

    async def _consume(self, run: _TurnRun, prompt: str, params: dict) -> str:
        """Stream, parse and dispatch until the model ends or the turn stops."""
        max_length = self.config.parser.max_buffer_length
        buffer = ""
        stream = self.model.stream(prompt, **params)
        try:
            while True:
                piece = await self._next_piece(run, stream)
                if piece is None:
                    break
                buffer += piece
                result = self.parser.parse(buffer)
                if result.halted:
                    self._halt(run, result.halt_reason)
                    break
                await self._handle_steps(run, result.steps)
                run.turn.response = display_text(buffer, max_length)
                await _invoke(run.on_token, run.turn.response)
                if run.stopped:
                    break
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not run.stopped:
            result = self.parser.parse(buffer, final=True)
            if result.halted:
                self._halt(run, result.halt_reason)
            else:
                await self._handle_steps(run, result.steps)
                run.turn.response = display_text(buffer, max_length)
        return buffer

    @staticmethod
    async def _next_piece(run: _TurnRun, stream) -> Optional[str]:
        """Next piece of ``stream``, or None once it ends or ``run`` is stopped.

        Waiting on the turn's own stop event means a stop closes this turn's
        generation only, even while the model is between pieces.
        """
        if run.stopped:
            return None
        pending = asyncio.create_task(_pull(stream))
        stopped = asyncio.create_task(run.stop_event.wait())
        try:
            await asyncio.wait({pending, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            if not pending.done():
                pending.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pending
        if pending.cancelled():
            return None
        return pending.result()

    def _halt(self, run: _TurnRun, reason: Optional[str]) -> None:
        logger.warning("Runaway generation, stopping turn: %s", reason)
        run.stop("runaway")
        run.turn.error = RunawayGenerationDetected(f"Generation halted: {reason}")

    async def _settle(self, run: _TurnRun) -> None:
        """Wait for every spawned tool execution to finish.

        Cancelling the turn while it waits here does not cancel the tools.
        """
        if not run.tasks:
            return
        gathered = asyncio.gather(*run.tasks, return_exceptions=True)
        try:
            results = await asyncio.shield(gathered)
        except asyncio.CancelledError:
            await gathered
            raise
        for result in results:
            if isinstance(result, Exception):
                logger.error("Tool task crashed: %s", result)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _emit(self, run: _TurnRun, step: Step) -> None:
        run.turn.steps.append(step)
        await _invoke(run.on_step, step)
        await self.hooks.trigger("on_step", OnStepEventData(turn=run.turn, step=step))

    async def _handle_steps(self, run: _TurnRun, steps: list[Step]) -> None:
        for step in steps:
            if step.step_id in run.forwarded:
                continue

            if step.kind is not StepKind.TOOL_CALL:
                if not step.complete:
                    continue
                run.forwarded.add(step.step_id)
                logger.debug("Step %s: %s", step.kind.value, step.content[:80])
                await self._emit(run, step)
                continue

            if run.stopped:
                logger.debug("Turn stopped, not dispatching %s", step.tool_name)
                continue
            run.forwarded.add(step.step_id)

            record = ToolCallRecord.from_call(step.tool_name, step.tool_args or {})
            if record.key in run.dispatched:
                logger.debug("Duplicate tool call %s ignored", record.tool_name)
                continue
            run.dispatched.add(record.key)
            run.turn.tool_calls.append(record)

            await self._emit(run, step)
            self.memory.record_step(step)
            run.tasks.append(asyncio.create_task(self._execute_tool(run, record)))

    async def _execute_tool(self, run: _TurnRun, record: ToolCallRecord) -> None:
        turn = run.turn
        before = await self.hooks.trigger(
            "before_tool_call",
            BeforeToolCallEventData(
                turn=turn,
                tool_name=record.tool_name,
                arguments=record.arguments,
                tool_index=turn.tool_calls.index(record),
            ),
        )

        start = time.perf_counter()
        if before and before.action == "skip" and before.cached_result is not None:
            logger.info("Serving cached result for %s", record.tool_name)
            result = {"success": True, **before.cached_result}
        else:
            try:
                result = await self.dispatcher.execute(record.tool_name, record.arguments)
            except Exception as e:
                logger.warning(
                    "Tool %s failed args=%s: %s",
                    record.tool_name, sanitize_args(record.arguments), e,
                )
                await self.hooks.trigger(
                    "on_tool_error",
                    OnToolErrorEventData(
                        turn=turn,
                        tool_name=record.tool_name,
                        arguments=record.arguments,
                        error=e,
                        error_message=str(e),
                    ),
                )
                step = Step.result(record, describe_error(record.tool_name, e), failure_result(e))
                await self._emit(run, step)
                self.memory.record_step(step)
                return

        elapsed_ms = (time.perf_counter() - start) * 1000
        await self.hooks.trigger(
            "after_tool_call",
            AfterToolCallEventData(
                turn=turn,
                tool_name=record.tool_name,
                arguments=record.arguments,
                result=result,
                execution_time_ms=elapsed_ms,
            ),
        )
        step = Step.result(record, describe_result(record.tool_name, result), result)
        await self._emit(run, step)
        self.memory.record_step(step)
