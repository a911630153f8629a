import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class StepKind(str, Enum):
    THOUGHT = "thought"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    FINAL_ANSWER = "final_answer"
    USER = "user"


def _digest(text: str, length: int = 16) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]


def make_step_id(kind: StepKind, position: int) -> str:
    """Id for a parsed step, stable for as long as its marker doesn't move."""
    return f"step_{_digest(f'{kind.value}:{position}')}"


def canonicalize_arguments(arguments: dict) -> str:
    return json.dumps(arguments, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class Step:
    kind: StepKind
    content: str
    step_id: str
    tool_name: Optional[str] = None
    tool_args: Optional[dict[str, Any]] = None
    tool_result: Optional[dict[str, Any]] = None
    complete: bool = True
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def user(cls, content: str) -> "Step":
        return cls(
            kind=StepKind.USER,
            content=content,
            step_id=f"user_{_digest(content)}",
        )

    @classmethod
    def result(
        cls,
        record: "ToolCallRecord",
        content: str,
        tool_result: dict[str, Any],
    ) -> "Step":
        return cls(
            kind=StepKind.TOOL_RESULT,
            content=content,
            step_id=f"result_{record.key[:16]}",
            tool_name=record.tool_name,
            tool_args=record.arguments,
            tool_result=tool_result,
        )

    @property
    def succeeded(self) -> bool:
        return bool(self.tool_result and self.tool_result.get("success"))


@dataclass(frozen=True)
class ToolCallRecord:
    """A tool invocation identified by name and canonical arguments."""

    tool_name: str
    arguments: dict[str, Any]
    canonical_arguments: str
    key: str

    @classmethod
    def from_call(cls, tool_name: str, arguments: dict[str, Any]) -> "ToolCallRecord":
        canonical = canonicalize_arguments(arguments)
        return cls(
            tool_name=tool_name,
            arguments=arguments,
            canonical_arguments=canonical,
            key=hashlib.sha256(f"{tool_name}\x00{canonical}".encode("utf-8")).hexdigest(),
        )


@dataclass
class Turn:
    input: str
    response: str = ""
    steps: list[Step] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    state: str = "running"  # "running" | "completed" | "errored" | "cancelled"
    error: Optional[Exception] = None
    stop_reason: Optional[str] = None  # "user" | "runaway" | "shutdown"
    metadata: dict = field(default_factory=dict)

    @property
    def final_answer(self) -> Optional[Step]:
        for step in reversed(self.steps):
            if step.kind is StepKind.FINAL_ANSWER:
                return step
        return None

    @property
    def tool_results(self) -> list[Step]:
        return [s for s in self.steps if s.kind is StepKind.TOOL_RESULT]
