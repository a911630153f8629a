"""Tool dispatcher.

Owns the capability registry and runs validated, time-boxed, retried tool
executions. Reliability metrics are shared by every turn that dispatches
through the same instance, so updates go through a lock.
"""

import asyncio
import logging
import threading
import time
from dataclasses import replace
from typing import Any, Optional

from agent_stream.config import DispatcherConfig
from agent_stream.exceptions import (
    ToolExecutionError,
    ToolNotFound,
    ToolTimeoutError,
    ToolValidationError,
)
from agent_stream.metrics import ReliabilityMetric
from agent_stream.schema import validate_arguments
from agent_stream.tools import Tool

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = ("password", "token", "secret")
_MAX_LOGGED_STRING = 100


def sanitize_args(args: dict[str, Any]) -> dict[str, Any]:
    """Redact sensitive fields and truncate long strings for logging."""
    sanitized: dict[str, Any] = {}
    for key, value in args.items():
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, str) and len(value) > _MAX_LOGGED_STRING:
            sanitized[key] = f"{value[:_MAX_LOGGED_STRING]}... [TRUNCATED]"
        else:
            sanitized[key] = value
    return sanitized


class ToolDispatcher:
    """Validates and executes tool calls against a registry of capabilities.

    Usage:
        dispatcher = ToolDispatcher([CreateTaskTool(store)])
        result = await dispatcher.execute("createTask", {"title": "x", "priority": "high"})
        result["success"]            # True
        result["execution_time_ms"]  # float
    """

    def __init__(
        self,
        tools: Optional[list[Tool]] = None,
        config: Optional[DispatcherConfig] = None,
    ):
        self.config = config or DispatcherConfig()
        self._tools: dict[str, Tool] = {}
        self._metrics: dict[str, ReliabilityMetric] = {}
        self._lock = threading.Lock()
        for tool in tools or []:
            self.register(tool)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        self._metrics[tool.name] = ReliabilityMetric(tool_name=tool.name)
        logger.debug("Registered tool %s", tool.name)

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(
                f"Tool '{name}' not found. Available tools: {', '.join(self._tools)}"
            )
        return tool

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def manifest(self) -> list[dict]:
        """Describe every registered tool, for prompt assembly."""
        return [
            {"name": t.name, "description": t.description, "parameters": t.schema()}
            for t in self._tools.values()
        ]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def validate(self, name: str, args: dict[str, Any]) -> None:
        validate_arguments(self.get(name).args_schema, args)

    async def execute(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        """Validate and run a tool, retrying timeouts and executor failures.

        Raises:
            ToolNotFound: unknown tool name (not retried).
            ToolValidationError: arguments rejected (not retried).
            ToolTimeoutError: every attempt timed out.
            ToolExecutionError: every attempt failed.
        """
        tool = self.get(name)
        logger.info("Executing tool %s args=%s", name, sanitize_args(args))
        validate_arguments(tool.args_schema, args)

        max_attempts = self.config.max_retries + 1
        last_error: Optional[BaseException] = None
        timed_out = False

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = (attempt - 1) * self.config.retry_delay_seconds
                logger.warning(
                    "Retrying tool %s (attempt %d/%d) in %.2fs",
                    name, attempt, max_attempts, delay,
                )
                await asyncio.sleep(delay)

            start = time.perf_counter()
            try:
                result = await asyncio.wait_for(
                    tool.execute(args), timeout=self.config.timeout_seconds
                )
            except ToolValidationError as e:
                self._record(name, False, 0.0, str(e))
                raise
            except asyncio.TimeoutError as e:
                last_error, timed_out = e, True
                self._record(name, False, 0.0, "Tool execution timeout")
                continue
            except Exception as e:
                last_error, timed_out = e, False
                self._record(name, False, 0.0, str(e))
                logger.warning("Tool %s failed on attempt %d: %s", name, attempt, e)
                continue

            elapsed_ms = (time.perf_counter() - start) * 1000
            merged = {"success": True, "execution_time_ms": elapsed_ms, **(result or {})}
            # a tool may report its own failure, e.g. a partially applied batch
            succeeded = bool(merged["success"])
            self._record(
                name, succeeded, elapsed_ms, None if succeeded else merged.get("message")
            )
            logger.debug("Tool %s completed in %.1fms (success=%s)", name, elapsed_ms, succeeded)
            return merged

        logger.error("Tool %s failed after %d attempts: %s", name, max_attempts, last_error)
        if timed_out:
            raise ToolTimeoutError(
                f"Tool '{name}' timed out after {max_attempts} attempts",
                attempts=max_attempts,
            ) from last_error
        raise ToolExecutionError(
            f"Tool '{name}' failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
        ) from last_error

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _record(
        self, name: str, success: bool, execution_time_ms: float, error: Optional[str] = None
    ) -> None:
        with self._lock:
            self._metrics[name].record(
                success,
                execution_time_ms,
                smoothing=self.config.success_rate_smoothing,
                error=error,
            )

    def metrics(self) -> dict[str, ReliabilityMetric]:
        with self._lock:
            return {name: replace(m) for name, m in self._metrics.items()}

    def optimization_suggestions(self) -> dict[str, list[str]]:
        threshold = self.config.reliability_threshold
        with self._lock:
            suggestions = {
                name: metric.suggestions(threshold) for name, metric in self._metrics.items()
            }
        return {name: s for name, s in suggestions.items() if s}

    def stats(self) -> dict[str, Any]:
        with self._lock:
            metrics = list(self._metrics.values())
        return {
            "total_tools": len(metrics),
            "total_executions": sum(m.total_executions for m in metrics),
            "avg_reliability": (
                sum(m.reliability_score for m in metrics) / len(metrics) if metrics else 0.0
            ),
        }
