"""Incremental parser for marker-delimited model output.

The model writes its reasoning as a sequence of spans introduced by one of
three markers::

    THOUGHT: I should create a task.
    TOOL_CALL: {"name": "createTask", "args": {"title": "Call Bob", "priority": "high"}}
    FINAL_ANSWER: Done, I added "Call Bob".

``StreamParser.parse`` is called with the *whole* buffer after every token
batch. Spans are re-scanned each time, and step ids are derived from the
marker position, so the same logical step always comes back with the same id
and the caller can deduplicate.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from agent_stream.config import ParserConfig
from agent_stream.execution import Step, StepKind, make_step_id

logger = logging.getLogger(__name__)

THOUGHT = "THOUGHT:"
TOOL_CALL = "TOOL_CALL:"
FINAL_ANSWER = "FINAL_ANSWER:"
MARKERS = (THOUGHT, TOOL_CALL, FINAL_ANSWER)

_MARKER_RE = re.compile(r"(THOUGHT|TOOL_CALL|FINAL_ANSWER):")
_KIND_BY_MARKER = {
    THOUGHT: StepKind.THOUGHT,
    TOOL_CALL: StepKind.TOOL_CALL,
    FINAL_ANSWER: StepKind.FINAL_ANSWER,
}
_MAX_INVALID_PREVIEW = 100


@dataclass
class ParseResult:
    steps: list[Step] = field(default_factory=list)
    halted: bool = False
    halt_reason: Optional[str] = None


@dataclass
class _Span:
    marker: str
    position: int
    content: str
    closed: bool


def _spans(buffer: str, final: bool) -> list[_Span]:
    matches = list(_MARKER_RE.finditer(buffer))
    spans = []
    for i, match in enumerate(matches):
        is_last = i == len(matches) - 1
        end = len(buffer) if is_last else matches[i + 1].start()
        spans.append(
            _Span(
                marker=match.group(0),
                position=match.start(),
                content=buffer[match.end():end],
                closed=final or not is_last,
            )
        )
    return spans


_DECODER = json.JSONDecoder()


def _load_object(text: str) -> Any:
    end = text.rfind("}")
    if end == -1:
        return None
    try:
        return json.loads(text[: end + 1].strip())
    except ValueError:
        pass
    # trailing prose may carry its own braces; the first complete object still counts
    start = text.find("{")
    if start == -1:
        return None
    try:
        payload, _ = _DECODER.raw_decode(text, start)
    except ValueError:
        return None
    return payload


def parse_tool_call(text: str) -> Optional[tuple[str, dict[str, Any]]]:
    """Parse ``{"name": ..., "args": {...}}``.

    Everything up to the last closing brace is tried first, then the first
    complete JSON object on its own. Returns None when the text isn't (yet) a
    valid call.
    """
    payload = _load_object(text)
    if not isinstance(payload, dict):
        return None
    name = payload.get("name")
    args = payload.get("args", {})
    if not isinstance(name, str) or not name:
        return None
    if args is None:
        args = {}
    if not isinstance(args, dict):
        return None
    return name, args


class StreamParser:
    """Turns a growing text buffer into steps.

    Usage:
        parser = StreamParser()
        result = parser.parse(buffer)            # while tokens are arriving
        result = parser.parse(buffer, final=True)  # once generation ends

        if result.halted:
            ...  # runaway output, stop the model
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self._low_diversity_re = re.compile(
            r"(.{1,50}?)\1{%d,}" % (self.config.min_repetitions - 1), re.DOTALL
        )
        self._pattern_re = re.compile(
            r"(.{%d,50}?)\1{%d,}"
            % (self.config.min_pattern_length, self.config.pattern_repetitions - 1),
            re.DOTALL,
        )

    def parse(self, buffer: str, final: bool = False) -> ParseResult:
        reason = self.detect_runaway(buffer)
        if reason:
            logger.warning("Halting parse: %s (buffer length %d)", reason, len(buffer))
            return ParseResult(halted=True, halt_reason=reason)

        steps = []
        for span in _spans(buffer, final):
            step = self._step_from_span(span)
            if step is not None:
                steps.append(step)
        return ParseResult(steps=steps)

    def detect_runaway(self, buffer: str) -> Optional[str]:
        """Return a reason string if the buffer looks like a degenerate loop."""
        if len(buffer) > self.config.max_buffer_length:
            return "buffer length limit exceeded"

        window = buffer[-self.config.repetition_window:]
        if any(self._is_loop(match) for match in self._pattern_re.finditer(window)):
            return "repeating pattern detected"

        # Only judge diversity on a full window; short buffers are naturally sparse.
        if len(window) >= self.config.repetition_window:
            if (
                len(set(window)) < self.config.low_diversity_threshold
                and self._low_diversity_re.search(window)
            ):
                return "low diversity repetition detected"
        return None

    def _is_loop(self, match: re.Match) -> bool:
        # Markdown rules and ellipses repeat punctuation only; a loop repeats
        # words with little variety.
        unit, run = match.group(1), match.group(0)
        if not any(ch.isalnum() for ch in unit):
            return False
        return len(set(run)) < self.config.low_diversity_threshold

    def _step_from_span(self, span: _Span) -> Optional[Step]:
        kind = _KIND_BY_MARKER[span.marker]
        if kind is StepKind.TOOL_CALL:
            return self._tool_call_step(span)

        content = span.content.strip()
        if not content:
            return None
        if not span.closed and len(content) <= self.config.min_step_length:
            return None
        return Step(
            kind=kind,
            content=content,
            step_id=make_step_id(kind, span.position),
            complete=span.closed,
        )

    def _tool_call_step(self, span: _Span) -> Optional[Step]:
        text = span.content.strip()
        parsed = parse_tool_call(text)
        if parsed is None:
            if not span.closed or not text:
                # incomplete, try again on the next batch
                return None
            logger.debug("Invalid tool call at %d: %s", span.position, text[:_MAX_INVALID_PREVIEW])
            return Step(
                kind=StepKind.THOUGHT,
                content=f"Invalid tool call format: {text[:_MAX_INVALID_PREVIEW]}",
                step_id=make_step_id(StepKind.THOUGHT, span.position),
            )

        name, args = parsed
        return Step(
            kind=StepKind.TOOL_CALL,
            content=f"Calling {name} with args: {json.dumps(args)}",
            step_id=make_step_id(StepKind.TOOL_CALL, span.position),
            tool_name=name,
            tool_args=args,
            complete=span.closed,
        )


# ============================================================================
# Display
# ============================================================================


def display_text(buffer: str, max_length: int = 10000) -> str:
    """Project the raw buffer to the text a user may see.

    Only the first FINAL_ANSWER span is shown. Reasoning and tool calls are
    never leaked: while they are all there is, the result is empty.
    """
    if not buffer or len(buffer) > max_length:
        return ""

    matches = list(_MARKER_RE.finditer(buffer))
    for i, match in enumerate(matches):
        if match.group(0) == FINAL_ANSWER:
            end = matches[i + 1].start() if i + 1 < len(matches) else len(buffer)
            return buffer[match.end():end].strip()
    if matches:
        return ""

    stripped = buffer.strip()
    if any(marker.startswith(stripped) for marker in MARKERS):
        # could still turn into a marker
        return ""
    return stripped


def format_agent_response(text: str, max_length: int = 10000) -> str:
    """Put every marker on its own paragraph, for debug views."""
    if not text or len(text) > max_length:
        return text
    text = re.sub(r"(\S)[ \t]*(THOUGHT:|TOOL_CALL:|FINAL_ANSWER:)", r"\1\n\n\2", text)
    text = re.sub(r"(THOUGHT:|TOOL_CALL:|FINAL_ANSWER:)[ \t]*(?=\S)", r"\1 ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
