#!/usr/bin/env python3
"""Offline example of agent-stream with a scripted streaming model.

No model server is needed: ``ScriptedModel`` streams a canned ReAct-style
response a few characters at a time, so you can watch steps surface and the
createTask tool run while "generation" is still going.

Run:
    python examples/mock_agent.py
"""

import asyncio

from agent_stream import (
    Agent,
    InMemoryRecordStore,
    MemoryManager,
    ModelAdaptor,
    ToolDispatcher,
    configure_logging,
    default_tools,
)

SCRIPT = (
    "THOUGHT: The user wants a reminder to call Bob, which is a high priority task.\n\n"
    'TOOL_CALL: {"name": "createTask", "args": {"title": "Call Bob", "priority": "high", '
    '"due_date": "2025-01-10"}}\n\n'
    "FINAL_ANSWER: I've added \"Call Bob\" to your tasks with high priority."
)


class ScriptedModel(ModelAdaptor):
    """Streams SCRIPT in small pieces, like a local model would."""

    def __init__(self, script: str = SCRIPT, piece_size: int = 6, delay: float = 0.01):
        super().__init__()
        self.script = script
        self.piece_size = piece_size
        self.delay = delay

    async def stream(self, prompt: str, **kwargs):
        self.stop_requested = False
        for i in range(0, len(self.script), self.piece_size):
            if self.stop_requested:
                break
            await asyncio.sleep(self.delay)
            yield self.script[i : i + self.piece_size]


def print_header(text: str, width: int = 70) -> None:
    print(f"\n{'=' * width}")
    print(f"  {text}")
    print(f"{'=' * width}\n")


def on_step(step) -> None:
    label = step.kind.value.upper()
    print(f"  [{label}] {step.content}")


async def main() -> None:
    configure_logging("WARNING")

    store = InMemoryRecordStore()
    memory = MemoryManager()
    memory.start()
    agent = Agent(
        model=ScriptedModel(),
        dispatcher=ToolDispatcher(default_tools(store)),
        memory=memory,
    )

    @agent.hook("after_tool_call")
    async def show_timing(event):
        print(f"  [hook] {event.tool_name} finished in {event.execution_time_ms:.1f}ms")

    print_header("Streaming turn")
    turn = await agent.process_query("Remind me to call Bob, it's important", on_step=on_step)

    print_header("Result")
    print(f"  State:      {turn.state}")
    print(f"  Response:   {turn.response}")
    print(f"  Tool calls: {len(turn.tool_calls)}")
    print(f"  Tasks:      {await store.list('task')}")
    print(f"  Memory:     {memory.stats()}")

    memory.dispose()


if __name__ == "__main__":
    asyncio.run(main())
