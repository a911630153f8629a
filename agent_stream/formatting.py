"""Human-readable text for tool_result steps."""

import re
from datetime import datetime
from typing import Any, Callable

_ERROR_CATEGORIES: list[tuple[re.Pattern, Callable[[str], str]]] = [
    (
        re.compile(r"required field", re.IGNORECASE),
        lambda msg: f"Missing required information. {msg.partition(':')[2].strip()}".rstrip(),
    ),
    (re.compile(r"must be one of", re.IGNORECASE), lambda msg: f"Invalid value provided. {msg}"),
    (
        re.compile(r"database connection", re.IGNORECASE),
        lambda msg: "Database connection issue. Please try again.",
    ),
    (re.compile(r"timeout|timed out", re.IGNORECASE), lambda msg: "Operation timed out. Please try again."),
    (re.compile(r"network", re.IGNORECASE), lambda msg: "Network error. Please check your connection."),
]


def _describe_create_task(result: dict[str, Any]) -> str:
    task = result.get("task")
    if not task:
        return result.get("message") or "Task created successfully"
    due = f" (due: {task['due_date']})" if task.get("due_date") else ""
    return f'Successfully created task "{task.get("title")}" with {task.get("priority")} priority{due}'


def _describe_response(result: dict[str, Any]) -> str:
    return result.get("response") or result.get("message") or "Response generated successfully"


_RESULT_FORMATTERS: dict[str, Callable[[dict[str, Any]], str]] = {
    "createTask": _describe_create_task,
    "respondToUser": _describe_response,
}


def describe_result(tool_name: str, result: dict[str, Any]) -> str:
    if not result.get("success"):
        return result.get("message") or "Operation failed"
    formatter = _RESULT_FORMATTERS.get(tool_name)
    if formatter is None:
        return result.get("message") or "Operation completed successfully"
    return formatter(result)


def describe_error(tool_name: str, error: BaseException) -> str:
    message = str(error)
    for pattern, render in _ERROR_CATEGORIES:
        if pattern.search(message):
            return f"Failed to execute {tool_name}: {render(message)}"
    return f"Failed to execute {tool_name}: {message}"


def error_details(error: BaseException) -> dict[str, Any]:
    """Type, message and any extra attributes the error carries (e.g. ``field``)."""
    details: dict[str, Any] = {
        "type": type(error).__name__,
        "message": str(error),
        "timestamp": datetime.now().isoformat(),
    }
    for key, value in vars(error).items():
        if not key.startswith("_"):
            details[key] = value
    return details


def failure_result(error: BaseException) -> dict[str, Any]:
    return {
        "success": False,
        "error": True,
        "message": str(error),
        "details": error_details(error),
    }
