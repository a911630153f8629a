"""Built-in productivity capabilities.

Executors reach application state only through a ``RecordStore``; the
agent core never touches storage directly.
"""

import itertools
import logging
import re
import threading
from datetime import datetime
from typing import Any, Optional, Protocol

from agent_stream.exceptions import ToolValidationError
from agent_stream.schema import (
    ArgumentSchema,
    EnumField,
    NumberField,
    ObjectField,
    StringField,
)
from agent_stream.tools import Tool

logger = logging.getLogger(__name__)

RECORD_KINDS = ("task", "event", "goal")
PRIORITIES = ["high", "medium", "low"]
STATUSES = ["pending", "in_progress", "completed", "cancelled"]
ACTIONS = ["create", "get", "update", "delete", "list"]
TYPE_COMBINATIONS = [
    "task",
    "event",
    "goal",
    "task OR event",
    "task OR goal",
    "event OR goal",
    "task OR event OR goal",
]


class RecordStore(Protocol):
    """Narrow CRUD surface over tasks, events and goals."""

    async def create(self, kind: str, data: dict[str, Any]) -> dict[str, Any]: ...

    async def get(self, kind: str, record_id: int) -> Optional[dict[str, Any]]: ...

    async def update(
        self, kind: str, record_id: int, data: dict[str, Any]
    ) -> Optional[dict[str, Any]]: ...

    async def delete(self, kind: str, record_id: int) -> bool: ...

    async def list(
        self, kind: str, filters: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]: ...


class InMemoryRecordStore:
    """Dict-backed RecordStore for tests, examples and demos."""

    def __init__(self):
        self._records: dict[str, dict[int, dict[str, Any]]] = {k: {} for k in RECORD_KINDS}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    async def create(self, kind: str, data: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now().isoformat()
        with self._lock:
            record_id = next(self._ids)
            record = {"id": record_id, **data, "created_at": now, "updated_at": now}
            self._records[kind][record_id] = record
        return dict(record)

    async def get(self, kind: str, record_id: int) -> Optional[dict[str, Any]]:
        record = self._records[kind].get(record_id)
        return dict(record) if record else None

    async def update(
        self, kind: str, record_id: int, data: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        with self._lock:
            record = self._records[kind].get(record_id)
            if record is None:
                return None
            record.update(data)
            record["updated_at"] = datetime.now().isoformat()
            return dict(record)

    async def delete(self, kind: str, record_id: int) -> bool:
        with self._lock:
            return self._records[kind].pop(record_id, None) is not None

    async def list(
        self, kind: str, filters: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        filters = dict(filters or {})
        limit = filters.pop("limit", None)
        offset = filters.pop("offset", 0) or 0
        start_date = filters.pop("start_date", None)
        end_date = filters.pop("end_date", None)

        records = [dict(r) for r in self._records[kind].values()]
        records = [r for r in records if all(r.get(k) == v for k, v in filters.items())]
        if start_date:
            records = [r for r in records if str(r.get("start_time", ""))[:10] >= start_date]
        if end_date:
            records = [r for r in records if str(r.get("end_time", ""))[:10] <= end_date]

        records = records[int(offset):]
        if limit is not None:
            records = records[: int(limit)]
        return records


# ============================================================================
# createTask
# ============================================================================


class CreateTaskTool(Tool):
    name = "createTask"
    description = (
        "Create a new task with title, priority (high/medium/low), description, "
        "due_date (YYYY-MM-DD), and status (pending/in_progress/completed/cancelled)"
    )
    args_schema = ArgumentSchema(
        fields={
            "title": StringField(required=True, max_length=200, description="Task title"),
            "priority": EnumField(required=True, values=PRIORITIES, description="Task priority"),
            "description": StringField(max_length=1000, description="Task details"),
            "due_date": StringField(format="date", description="Due date (YYYY-MM-DD)"),
            "status": EnumField(values=STATUSES, description="Task status, defaults to pending"),
        }
    )

    def __init__(self, store: RecordStore):
        self.store = store

    async def execute(self, args: dict[str, Any]) -> dict[str, Any]:
        data = {
            "title": args["title"].strip(),
            "description": (args.get("description") or "").strip() or None,
            "priority": args["priority"],
            "status": args.get("status") or "pending",
            "due_date": args.get("due_date"),
        }
        task = await self.store.create("task", data)
        logger.info("Created task %s (%s priority)", task["id"], task["priority"])
        return {
            "task": task,
            "message": f'Task "{task["title"]}" created successfully with {task["priority"]} priority',
        }


# ============================================================================
# respondToUser
# ============================================================================


def _mentions(text: str, *words: str) -> bool:
    return any(re.search(rf"\b{re.escape(w)}\b", text) for w in words)


def canned_reply(query: str) -> str:
    q = query.lower()
    if _mentions(q, "hello", "hi", "hey"):
        return (
            "Hello! I'm here to help you manage your tasks, calendar events, and goals. "
            "What would you like to work on today?"
        )
    if _mentions(q, "help"):
        return (
            "I can help you with creating and managing tasks, scheduling calendar events, "
            "setting goals, and answering general questions. Just let me know what you need!"
        )
    if _mentions(q, "thank", "thanks"):
        return (
            "You're welcome! I'm always here to help you stay organized and productive. "
            "Is there anything else you'd like to work on?"
        )
    if "how are you" in q:
        return "I'm doing great and ready to help you be more productive! How can I assist you today?"
    if _mentions(q, "time", "date"):
        now = datetime.now().strftime("%Y-%m-%d %H:%M")
        return (
            f"It's currently {now}. Would you like me to help you create a task, "
            "schedule an event, or set a goal?"
        )
    if _mentions(q, "task", "tasks"):
        return (
            "I can help you create, update, or manage tasks! Tasks can have priorities "
            "(high, medium, low), statuses (pending, in_progress, completed, cancelled), and due dates."
        )
    if _mentions(q, "event", "events", "calendar", "schedule"):
        return (
            "I can help you create and manage calendar events! Events need start and end "
            "times, and can optionally include descriptions and locations."
        )
    if _mentions(q, "goal", "goals"):
        return (
            "I can help you set and track goals! Goals have target values, current progress, "
            "categories, and optional due dates to help you stay motivated."
        )
    return (
        "I understand you're looking for assistance. I can help you manage tasks, calendar "
        "events, and goals. Could you tell me more about what you'd like to accomplish?"
    )


class RespondToUserTool(Tool):
    name = "respondToUser"
    description = (
        "Provide a conversational response to user queries based on internal reasoning "
        "without calling other tools"
    )
    args_schema = ArgumentSchema(
        fields={
            "query": StringField(required=True, min_length=1, description="The user's message"),
            "context": StringField(description="Additional context for the response"),
        }
    )

    async def execute(self, args: dict[str, Any]) -> dict[str, Any]:
        response = canned_reply(args["query"])
        if args.get("context"):
            response = f"{response} {args['context']}"
        return {
            "response": response,
            "query": args["query"],
            "timestamp": datetime.now().isoformat(),
            "message": "Response generated successfully",
        }


# ============================================================================
# manageProductivity
# ============================================================================


def _require(args: dict[str, Any], *names: str, kind: str, action: str) -> None:
    for name in names:
        if args.get(name) is None:
            raise ToolValidationError(
                f"Missing required field: {name} (needed to {action} a {kind})", field=name
            )


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    return value.strip()[:limit] if value else None


class ManageProductivityTool(Tool):
    """One capability for CRUD over tasks, events and goals.

    ``type`` may combine kinds with OR ("task OR goal"); the action runs once
    per kind and the per-kind results are returned together. A kind that
    fails validation or can't find its record reports ``success: False``
    without hiding the others.
    """

    name = "manageProductivity"
    description = (
        "Create and manage tasks, calendar events, and goals. Can handle multiple "
        'kinds at once with an OR separator (e.g. "task OR event")'
    )
    args_schema = ArgumentSchema(
        fields={
            "type": EnumField(required=True, values=TYPE_COMBINATIONS),
            "action": EnumField(required=True, values=ACTIONS),
            "id": NumberField(integer=True, minimum=1, description="Record id for get/update/delete"),
            "title": StringField(description="Title (required to create)"),
            "description": StringField(),
            "priority": EnumField(values=PRIORITIES, description="Tasks only"),
            "status": EnumField(values=STATUSES, description="Tasks only"),
            "due_date": StringField(format="date", description="Tasks and goals"),
            "start_time": StringField(format="datetime", description="Events only"),
            "end_time": StringField(format="datetime", description="Events only"),
            "location": StringField(max_length=200, description="Events only"),
            "target_value": NumberField(description="Goals only"),
            "current_value": NumberField(description="Goals only"),
            "category": StringField(max_length=100, description="Goals only"),
            "filters": ObjectField(description="Filters for list"),
        }
    )

    def __init__(self, store: RecordStore):
        self.store = store

    async def execute(self, args: dict[str, Any]) -> dict[str, Any]:
        kinds = [k.strip() for k in args["type"].lower().split(" or ")]
        action = args["action"]
        results = []
        for kind in kinds:
            try:
                result = await self._run(kind, action, args)
            except ToolValidationError as e:
                logger.warning("%s %s rejected: %s", kind, action, e)
                result = {"success": False, "error": str(e)}
            results.append({"type": kind, "action": action, **result})

        return {
            "success": all(r.get("success") is not False for r in results),
            "results": results,
            "timestamp": datetime.now().isoformat(),
            "message": f"Processed {len(results)} operation(s)",
        }

    async def _run(self, kind: str, action: str, args: dict[str, Any]) -> dict[str, Any]:
        plural = f"{kind}s"
        if action == "create":
            data = self._creation_data(kind, args)
            record = await self.store.create(kind, data)
            return {
                "success": True,
                kind: record,
                "message": f'{kind.capitalize()} "{record["title"]}" created successfully',
            }

        if action == "list":
            records = await self.store.list(kind, args.get("filters"))
            return {
                "success": True,
                plural: records,
                "count": len(records),
                "message": f"Retrieved {len(records)} {plural}",
            }

        _require(args, "id", kind=kind, action=action)
        record_id = int(args["id"])

        if action == "get":
            record = await self.store.get(kind, record_id)
            if record is None:
                return {"success": False, "message": f"{kind.capitalize()} {record_id} not found"}
            return {"success": True, kind: record, "message": f'Retrieved {kind} "{record.get("title")}"'}

        if action == "update":
            changes = {
                k: v
                for k, v in args.items()
                if k not in ("type", "action", "id", "filters") and v is not None
            }
            record = await self.store.update(kind, record_id, changes)
            if record is None:
                return {"success": False, "message": f"{kind.capitalize()} {record_id} not found"}
            return {"success": True, kind: record, "message": f'Updated {kind} "{record.get("title")}"'}

        deleted = await self.store.delete(kind, record_id)
        return {
            "success": deleted,
            "message": f"{kind.capitalize()} deleted successfully" if deleted else f"{kind.capitalize()} not found",
        }

    def _creation_data(self, kind: str, args: dict[str, Any]) -> dict[str, Any]:
        base = {
            "title": _clip(args.get("title"), 200),
            "description": _clip(args.get("description"), 1000),
        }
        if kind == "task":
            _require(args, "title", "priority", kind=kind, action="create")
            return {
                **base,
                "priority": args["priority"],
                "status": args.get("status") or "pending",
                "due_date": args.get("due_date"),
            }
        if kind == "event":
            _require(args, "title", "start_time", "end_time", kind=kind, action="create")
            return {
                **base,
                "start_time": args["start_time"],
                "end_time": args["end_time"],
                "location": _clip(args.get("location"), 200),
            }
        _require(args, "title", "target_value", kind=kind, action="create")
        return {
            **base,
            "target_value": args["target_value"],
            "current_value": args.get("current_value") or 0,
            "due_date": args.get("due_date"),
            "category": _clip(args.get("category"), 100),
        }


def default_tools(store: RecordStore) -> list[Tool]:
    return [CreateTaskTool(store), RespondToUserTool(), ManageProductivityTool(store)]
