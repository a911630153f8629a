from agent_stream.adaptors import OllamaAdaptor, OpenAIAdaptor
from agent_stream.agent import Agent
from agent_stream.capabilities import (
    CreateTaskTool,
    InMemoryRecordStore,
    ManageProductivityTool,
    RecordStore,
    RespondToUserTool,
    default_tools,
)
from agent_stream.config import AgentConfig, DispatcherConfig, MemoryConfig, ParserConfig
from agent_stream.dispatcher import ToolDispatcher
from agent_stream.exceptions import (
    AgentStreamError,
    ModelLoading,
    ModelNotLoaded,
    RunawayGenerationDetected,
    SystemBusy,
    ToolExecutionError,
    ToolNotFound,
    ToolTimeoutError,
    ToolValidationError,
)
from agent_stream.execution import Step, StepKind, ToolCallRecord, Turn
from agent_stream.hooks import (
    AfterModelCallEventData,
    AfterToolCallEventData,
    AfterTurnEventData,
    BeforeModelCallEventData,
    BeforeToolCallEventData,
    BeforeTurnEventData,
    HookEvent,
    HookRegistry,
    HookResponse,
    Middleware,
    OnStepEventData,
    OnToolErrorEventData,
)
from agent_stream.log import configure_logging
from agent_stream.memory import MemoryManager, MemoryMessage
from agent_stream.metrics import ReliabilityMetric
from agent_stream.model import ModelAdaptor
from agent_stream.parser import ParseResult, StreamParser, display_text, format_agent_response
from agent_stream.prompt import PromptBuilder
from agent_stream.schema import (
    AnyField,
    ArgumentSchema,
    ArrayField,
    BooleanField,
    EnumField,
    NumberField,
    ObjectField,
    StringField,
    validate_arguments,
)
from agent_stream.tools import FunctionTool, Tool

__all__ = [
    # Core
    "Agent",
    "Turn",
    "Step",
    "StepKind",
    "ToolCallRecord",
    "ModelAdaptor",
    "OllamaAdaptor",
    "OpenAIAdaptor",
    "StreamParser",
    "ParseResult",
    "display_text",
    "format_agent_response",
    "PromptBuilder",
    "MemoryManager",
    "MemoryMessage",
    "ToolDispatcher",
    "ReliabilityMetric",
    "Tool",
    "FunctionTool",
    # Schema
    "ArgumentSchema",
    "StringField",
    "NumberField",
    "BooleanField",
    "EnumField",
    "ArrayField",
    "ObjectField",
    "AnyField",
    "validate_arguments",
    # Capabilities
    "RecordStore",
    "InMemoryRecordStore",
    "CreateTaskTool",
    "RespondToUserTool",
    "ManageProductivityTool",
    "default_tools",
    # Config / logging
    "AgentConfig",
    "ParserConfig",
    "DispatcherConfig",
    "MemoryConfig",
    "configure_logging",
    # Hooks
    "HookRegistry",
    "HookEvent",
    "HookResponse",
    "Middleware",
    "BeforeTurnEventData",
    "AfterTurnEventData",
    "BeforeModelCallEventData",
    "AfterModelCallEventData",
    "OnStepEventData",
    "BeforeToolCallEventData",
    "AfterToolCallEventData",
    "OnToolErrorEventData",
    # Exceptions
    "AgentStreamError",
    "ToolValidationError",
    "ToolNotFound",
    "ToolExecutionError",
    "ToolTimeoutError",
    "RunawayGenerationDetected",
    "ModelNotLoaded",
    "ModelLoading",
    "SystemBusy",
]
