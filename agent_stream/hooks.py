"""Hook system for agent-stream.

Lets applications observe and steer a turn without touching the Agent.

Architecture:
- HookRegistry is the core implementation
- Decorator (@hooks.on, @agent.hook) and Middleware are convenience wrappers
- Everything goes through HookRegistry
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class HookEvent(str, Enum):
    """Available hook points in a turn."""

    BEFORE_TURN = "before_turn"
    AFTER_TURN = "after_turn"

    BEFORE_MODEL_CALL = "before_model_call"
    AFTER_MODEL_CALL = "after_model_call"

    ON_STEP = "on_step"

    BEFORE_TOOL_CALL = "before_tool_call"
    AFTER_TOOL_CALL = "after_tool_call"
    ON_TOOL_ERROR = "on_tool_error"


# ============================================================================
# Hook Event Data Classes
# ============================================================================


@dataclass
class BeforeTurnEventData:
    """Called once pre-flight checks have passed."""

    agent: Any  # Agent instance
    input: str
    turn: Any = None  # Turn instance, the handle for Agent.stop(turn)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AfterTurnEventData:
    """Called when a turn reaches a terminal state."""

    turn: Any  # Turn instance
    total_time_ms: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class BeforeModelCallEventData:
    turn: Any
    prompt: str
    params: Dict[str, Any]


@dataclass
class AfterModelCallEventData:
    turn: Any
    output: str
    response_time_ms: float


@dataclass
class OnStepEventData:
    """Called for every step forwarded to the caller."""

    turn: Any
    step: Any  # Step instance


@dataclass
class BeforeToolCallEventData:
    turn: Any
    tool_name: str
    arguments: Dict[str, Any]
    tool_index: int


@dataclass
class AfterToolCallEventData:
    turn: Any
    tool_name: str
    arguments: Dict[str, Any]
    result: Dict[str, Any]
    execution_time_ms: float


@dataclass
class OnToolErrorEventData:
    """Called when a tool call fails after the dispatcher gave up."""

    turn: Any
    tool_name: str
    arguments: Dict[str, Any]
    error: Exception
    error_message: str


# ============================================================================
# Hook Response
# ============================================================================


@dataclass
class HookResponse:
    """What a hook can return to influence a turn."""

    action: Optional[str] = None  # 'skip' is the only action acted upon
    cached_result: Optional[Dict[str, Any]] = None  # Served instead of executing the tool

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["HookResponse"]:
        if data is None:
            return None
        if isinstance(data, HookResponse):
            return data
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


# ============================================================================
# Hook Registry
# ============================================================================


class HookRegistry:
    """Central registry for all hooks.

    Supports both decorator-style and direct registration. Handlers may be
    plain functions or coroutines.

    Usage:
        hooks = HookRegistry()

        @hooks.on('after_tool_call')
        async def log_tool(event):
            print(f"Tool: {event.tool_name}")

        # Or direct registration
        def my_hook(event):
            pass
        hooks.register_handler('on_step', my_hook)
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {
            event.value: [] for event in HookEvent
        }

    def on(self, hook_name: str):
        """Decorator for registering hook handlers."""

        def decorator(func: Callable) -> Callable:
            self.register_handler(hook_name, func)
            return func

        return decorator

    def register_handler(self, hook_name: str, handler: Callable) -> None:
        """Register a hook handler.

        Raises:
            ValueError: If hook_name is not valid
        """
        if hook_name not in self._handlers:
            valid_hooks = [e.value for e in HookEvent]
            raise ValueError(
                f"Invalid hook name '{hook_name}'. Valid hooks: {valid_hooks}"
            )
        self._handlers[hook_name].append(handler)

    async def trigger(
        self,
        hook_name: str,
        event_data: Any,
    ) -> Optional[HookResponse]:
        """Execute all handlers for a hook.

        Returns:
            First non-None response from any handler, or None
        """
        for handler in self._handlers.get(hook_name, []):
            try:
                result = handler(event_data)
                if inspect.isawaitable(result):
                    result = await result
                if result is not None:
                    return HookResponse.from_dict(result)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Log but don't fail the turn
                logger.warning("Hook '%s' raised exception: %s", hook_name, e)

        return None

    def has_handlers(self, hook_name: str) -> bool:
        return bool(self._handlers.get(hook_name))

    def clear(self) -> None:
        """Clear all handlers (useful for testing)."""
        for handlers in self._handlers.values():
            handlers.clear()


# ============================================================================
# Middleware Base Class (Optional, for stateful handlers)
# ============================================================================


class Middleware:
    """Base class for middleware (stateful hook handlers).

    Override methods for hooks you want to handle.

    Usage:
        class AuditMiddleware(Middleware):
            async def after_tool_call(self, event):
                audit_log.append(event.tool_name)

        agent = Agent(model, dispatcher, memory, middlewares=[AuditMiddleware()])
    """

    async def before_turn(self, event: BeforeTurnEventData) -> Optional[Dict]:
        pass

    async def after_turn(self, event: AfterTurnEventData) -> Optional[Dict]:
        pass

    async def before_model_call(self, event: BeforeModelCallEventData) -> Optional[Dict]:
        pass

    async def after_model_call(self, event: AfterModelCallEventData) -> Optional[Dict]:
        pass

    async def on_step(self, event: OnStepEventData) -> Optional[Dict]:
        pass

    async def before_tool_call(self, event: BeforeToolCallEventData) -> Optional[Dict]:
        pass

    async def after_tool_call(self, event: AfterToolCallEventData) -> Optional[Dict]:
        pass

    async def on_tool_error(self, event: OnToolErrorEventData) -> Optional[Dict]:
        pass
