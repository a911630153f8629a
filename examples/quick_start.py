"""Minimal agent-stream example against a local Ollama server.

Requires `ollama serve` and `ollama pull qwen2.5:0.5b`.
"""

from agent_stream import (
    Agent,
    InMemoryRecordStore,
    MemoryManager,
    OllamaAdaptor,
    ToolDispatcher,
    configure_logging,
    default_tools,
)

configure_logging("INFO")

agent = Agent(
    model=OllamaAdaptor(model="qwen2.5:0.5b"),
    dispatcher=ToolDispatcher(default_tools(InMemoryRecordStore())),
    memory=MemoryManager(),
)


@agent.hook("after_tool_call")
async def on_tool_call(event):
    print(f"[hook] {event.tool_name}({event.arguments}) -> {event.result.get('message')}")


def on_token(text):
    print(f"\r{text}", end="", flush=True)


if __name__ == "__main__":
    turn = agent.run("Add a task to review the quarterly report, high priority", on_token=on_token)
    print()
    print(f"{turn.state}: {turn.response}")
