"""Conversational memory.

Three stores live behind one lock:

- short-term: the last ``max_short_term`` dialogue messages, oldest dropped
  first (no archiving, no summarising);
- working: a key/value scratchpad written from tool outcomes, swept when an
  entry is both stale and rarely read;
- entities: task/goal phrases pulled out of messages and ranked by frequency
  and recency.

``build_context`` turns these into the text block that goes into the next
prompt. One MemoryManager is shared by every turn in the process, so it is
created once at startup, injected into the Agent, and torn down with
``dispose()``.
"""

import asyncio
import copy
import json
import logging
import math
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from agent_stream.config import MemoryConfig
from agent_stream.execution import Step, StepKind

logger = logging.getLogger(__name__)

_ENTITY_RE = re.compile(
    r"\b(task|todo|reminder|deadline|project|goal)s?\s+([a-z0-9][a-z0-9 ]*)"
)
_MAX_ENTITY_WORDS = 4
_URGENCY_WORDS = ("important", "urgent", "critical")
_PROBLEM_WORDS = ("error", "problem", "issue")


def estimate_tokens(text: str) -> int:
    # roughly 4 characters per token for English
    return math.ceil(len(text) / 4)


def calculate_importance(content: str, tools_used: Optional[list[str]] = None) -> float:
    importance = 0.5
    if tools_used:
        importance += 0.3
    lowered = content.lower()
    if any(word in lowered for word in _URGENCY_WORDS):
        importance += 0.2
    if "?" in lowered:
        importance += 0.1
    if any(word in lowered for word in _PROBLEM_WORDS):
        importance += 0.2
    return min(importance, 1.0)


@dataclass
class MemoryMessage:
    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    tools_used: list[str] = field(default_factory=list)
    importance: float = 0.5


@dataclass
class WorkingMemoryEntry:
    value: Any
    timestamp: datetime = field(default_factory=datetime.now)
    access_count: int = 1
    last_accessed: Optional[datetime] = None


@dataclass
class EntityMemory:
    name: str
    entity_type: str  # "task" | "goal" | "concept"
    attributes: dict[str, Any] = field(default_factory=dict)
    frequency: int = 1
    last_mentioned: datetime = field(default_factory=datetime.now)


@dataclass
class MemorySnapshot:
    short_term: list[MemoryMessage]
    working: dict[str, WorkingMemoryEntry]
    entities: dict[str, EntityMemory]


class MemoryManager:
    """Process-wide conversational memory.

    Example:
        memory = MemoryManager()
        memory.start()  # periodic sweep, needs a running event loop

        memory.add_message(MemoryMessage(role="user", content="Add a task to call Bob"))
        memory.update_working("last_tool_createTask", {"title": "Call Bob"})

        context = memory.build_context(max_tokens=512)

        memory.dispose()
    """

    def __init__(self, config: Optional[MemoryConfig] = None):
        self.config = config or MemoryConfig()
        self._short_term: list[MemoryMessage] = []
        self._working: dict[str, WorkingMemoryEntry] = {}
        self._entities: dict[str, EntityMemory] = {}
        self._lock = threading.RLock()
        self._sweep_task: Optional[asyncio.Task] = None

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
            logger.info("Memory sweep started")

    def dispose(self) -> None:
        """Stop the periodic sweep and drop all state."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
        self.clear()
        logger.info("Memory disposed")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            self.sweep()
            logger.debug("Periodic memory sweep completed")

    # ==========================================================================
    # Short-term memory
    # ==========================================================================

    def add_message(self, message: MemoryMessage) -> MemoryMessage:
        """Append a message, score its importance and trim history."""
        with self._lock:
            message.importance = calculate_importance(message.content, message.tools_used)
            self._short_term.append(message)
            self._extract_entities(message)
            self._trim_short_term()
        logger.debug("Added %s message with importance %.2f", message.role, message.importance)
        return message

    def messages(self) -> list[MemoryMessage]:
        with self._lock:
            return list(self._short_term)

    def _trim_short_term(self) -> None:
        overflow = len(self._short_term) - self.config.max_short_term
        if overflow > 0:
            del self._short_term[:overflow]
            logger.debug("Dropped %d old messages from short-term memory", overflow)

    # ==========================================================================
    # Working memory
    # ==========================================================================

    def update_working(self, key: str, value: Any) -> None:
        with self._lock:
            existing = self._working.get(key)
            self._working[key] = WorkingMemoryEntry(
                value=value,
                access_count=(existing.access_count if existing else 0) + 1,
            )
        logger.debug("Updated working memory: %s", key)

    def get_working(self, key: str) -> tuple[Any, bool]:
        """Return ``(value, found)``; reading counts as an access."""
        with self._lock:
            entry = self._working.get(key)
            if entry is None:
                return None, False
            entry.access_count += 1
            entry.last_accessed = datetime.now()
            return entry.value, True

    def record_step(self, step: Step) -> None:
        """Learn from a tool call or a successful tool result."""
        if step.kind is StepKind.TOOL_CALL and step.tool_name:
            self.update_working(
                f"last_tool_{step.tool_name}",
                {"args": step.tool_args, "timestamp": step.created_at.isoformat()},
            )
        elif step.kind is StepKind.TOOL_RESULT and step.tool_name and step.succeeded:
            self.update_working(
                f"tool_result_{step.tool_name}",
                {"result": step.tool_result, "timestamp": step.created_at.isoformat()},
            )

    # ==========================================================================
    # Entities
    # ==========================================================================

    def _extract_entities(self, message: MemoryMessage) -> None:
        content = message.content.lower()
        for keyword, phrase in _ENTITY_RE.findall(content):
            words = phrase.split()[:_MAX_ENTITY_WORDS]
            if not words:
                continue
            name = f"{keyword} {' '.join(words)}"
            entity_type = "goal" if keyword == "goal" else "task"
            self._touch_entity(name, entity_type, {"mentioned_in": message.content[:200]})

        if any(word in content for word in ("urgent", "important", "high priority")):
            self._touch_entity("high_priority_tasks", "concept", {})

    def _touch_entity(self, name: str, entity_type: str, attributes: dict[str, Any]) -> None:
        existing = self._entities.get(name)
        if existing:
            existing.frequency += 1
            existing.last_mentioned = datetime.now()
            existing.attributes.update(attributes)
        else:
            self._entities[name] = EntityMemory(
                name=name, entity_type=entity_type, attributes=dict(attributes)
            )

    # ==========================================================================
    # Context
    # ==========================================================================

    def build_context(self, max_tokens: Optional[int] = None) -> str:
        """Compose entity, working-memory and dialogue sections for a prompt.

        Dialogue is selected backwards from the newest message and stops
        before the estimated token total would exceed ``max_tokens``. Messages
        are never cut in half.
        """
        budget = self.config.max_context_tokens if max_tokens is None else max_tokens
        with self._lock:
            entity_context = self._entity_context()
            working_context = self._working_context()
            messages = self._select_messages(budget)

        sections = []
        if entity_context:
            sections.append(f"## Relevant Context:\n{entity_context}")
        if working_context:
            sections.append(f"## Working Memory:\n{working_context}")
        if messages:
            lines = "\n".join(f"{m.role}: {m.content}" for m in messages)
            sections.append(f"## Recent Conversation:\n{lines}")
        return "\n\n".join(sections)

    def _select_messages(self, max_tokens: int) -> list[MemoryMessage]:
        selected: list[MemoryMessage] = []
        total = 0
        for message in reversed(self._short_term):
            cost = estimate_tokens(message.content)
            if total + cost > max_tokens:
                break
            selected.append(message)
            total += cost
        selected.reverse()
        return selected

    def _entity_context(self) -> str:
        cutoff = datetime.now() - timedelta(seconds=self.config.entity_recency_seconds)
        ranked = sorted(
            (e for e in self._entities.values() if e.frequency > 2 or e.last_mentioned > cutoff),
            key=lambda e: (e.frequency, e.last_mentioned),
            reverse=True,
        )[: self.config.max_entities]
        return "\n".join(
            f"{e.name} ({e.entity_type}): {json.dumps(e.attributes, default=str)}" for e in ranked
        )

    def _working_context(self) -> str:
        cutoff = datetime.now() - timedelta(seconds=self.config.working_recency_seconds)
        ranked = sorted(
            ((k, e) for k, e in self._working.items() if e.timestamp > cutoff),
            key=lambda item: item[1].access_count,
            reverse=True,
        )[: self.config.max_working_entries]
        return "\n".join(f"{k}: {json.dumps(e.value, default=str)}" for k, e in ranked)

    # ==========================================================================
    # Maintenance
    # ==========================================================================

    def sweep(self) -> int:
        """Trim history and evict stale, rarely-used working entries.

        An entry is evicted only when it is older than the TTL *and* has been
        accessed fewer than ``min_access_count`` times.

        Returns:
            Number of working-memory entries evicted.
        """
        cutoff = datetime.now() - timedelta(seconds=self.config.working_ttl_seconds)
        with self._lock:
            self._trim_short_term()
            stale = [
                key
                for key, entry in self._working.items()
                if entry.timestamp < cutoff and entry.access_count < self.config.min_access_count
            ]
            for key in stale:
                del self._working[key]
        if stale:
            logger.debug("Evicted %d working memory entries", len(stale))
        return len(stale)

    def snapshot(self) -> MemorySnapshot:
        with self._lock:
            return MemorySnapshot(
                short_term=copy.deepcopy(self._short_term),
                working=copy.deepcopy(self._working),
                entities=copy.deepcopy(self._entities),
            )

    def restore(self, snapshot: MemorySnapshot) -> None:
        with self._lock:
            self._short_term = copy.deepcopy(snapshot.short_term)
            self._working = copy.deepcopy(snapshot.working)
            self._entities = copy.deepcopy(snapshot.entities)
        logger.info("Restored memory from snapshot")

    def clear(self) -> None:
        with self._lock:
            self._short_term.clear()
            self._working.clear()
            self._entities.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            payload = json.dumps(
                {
                    "short_term": [m.content for m in self._short_term],
                    "working": {k: e.value for k, e in self._working.items()},
                    "entities": {k: e.attributes for k, e in self._entities.items()},
                },
                default=str,
            )
            return {
                "short_term_messages": len(self._short_term),
                "working_memory_entries": len(self._working),
                "entity_memory_entries": len(self._entities),
                "memory_usage_kb": math.ceil(len(payload) / 1024),
                "sweep_active": self._sweep_task is not None and not self._sweep_task.done(),
            }
