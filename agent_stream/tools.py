from typing import Any, Awaitable, Callable

from agent_stream.schema import ArgumentSchema


class Tool:
    """A named capability the agent may invoke.

    Subclass and set ``name``, ``description`` and ``args_schema``, then
    implement ``execute``. The dispatcher validates arguments against
    ``args_schema`` before ``execute`` is called, so executors may assume
    required fields are present and well-typed. Fields the schema doesn't
    declare are passed through in ``args``.
    """

    name: str
    description: str
    args_schema: ArgumentSchema = ArgumentSchema()

    def schema(self) -> dict:
        """Return JSON schema for the tool's arguments."""
        return self.args_schema.json_schema()

    async def execute(self, args: dict[str, Any]) -> dict[str, Any]:
        """Execute the tool. Always async; sync tools wrap sync code."""
        raise NotImplementedError


class FunctionTool(Tool):
    """Wraps a plain async function as a Tool."""

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[[dict[str, Any]], Awaitable[dict[str, Any]]],
        args_schema: ArgumentSchema | None = None,
    ):
        self.name = name
        self.description = description
        self.args_schema = args_schema or ArgumentSchema()
        self._func = func

    async def execute(self, args: dict[str, Any]) -> dict[str, Any]:
        return await self._func(args)
