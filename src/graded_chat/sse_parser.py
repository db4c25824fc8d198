"""Incremental parser for the Messages API server-sent event stream.

The parser is fed one line at a time and is tolerant: lines it does not
understand, events of unknown type and undecodable payloads are skipped.
Tool input arrives as ``input_json_delta`` fragments that are concatenated in
arrival order and decoded only when the owning content block closes.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

_DATA_PREFIX = "data:"
_DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any]

    def to_block(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class StreamResult:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str = "end_turn"
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStarted:
    id: str
    name: str


@dataclass(frozen=True)
class ToolInputDelta:
    partial_json: str


@dataclass(frozen=True)
class ToolCallCompleted:
    tool_call: ToolCall


@dataclass(frozen=True)
class MessageCompleted:
    stop_reason: str | None
    output_tokens: int


StreamEvent = TextDelta | ToolCallStarted | ToolInputDelta | ToolCallCompleted | MessageCompleted


class SseStreamParser:
    def __init__(self) -> None:
        self._text_parts: list[str] = []
        self._tool_calls: list[ToolCall] = []
        self._stop_reason = "end_turn"
        self._input_tokens = 0
        self._output_tokens = 0

        self._block_type: str | None = None
        self._tool_id: str | None = None
        self._tool_name: str | None = None
        self._tool_input_parts: list[str] = []

    def feed_line(self, line: str) -> list[StreamEvent]:
        line = line.rstrip("\r\n")
        if not line.startswith(_DATA_PREFIX):
            # "event:" names duplicate the payload's "type"; blank lines end an event.
            return []
        payload = line[len(_DATA_PREFIX):].strip()
        if not payload or payload == _DONE_SENTINEL:
            return []
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"Skipping undecodable stream event: {payload[:200]}")
            return []
        if not isinstance(event, dict):
            return []
        return self._handle(event)

    def feed_lines(self, lines: Iterable[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in lines:
            events.extend(self.feed_line(line))
        return events

    def result(self) -> StreamResult:
        return StreamResult(
            text="".join(self._text_parts),
            tool_calls=list(self._tool_calls),
            stop_reason=self._stop_reason,
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
        )

    def _handle(self, event: dict[str, Any]) -> list[StreamEvent]:
        event_type = event.get("type")
        if event_type == "message_start":
            usage = _as_dict(_as_dict(event.get("message")).get("usage"))
            self._input_tokens = _as_int(usage.get("input_tokens"), self._input_tokens)
            self._output_tokens = _as_int(usage.get("output_tokens"), self._output_tokens)
            return []
        if event_type == "content_block_start":
            return self._on_block_start(_as_dict(event.get("content_block")))
        if event_type == "content_block_delta":
            return self._on_block_delta(_as_dict(event.get("delta")))
        if event_type == "content_block_stop":
            return self._on_block_stop()
        if event_type == "message_delta":
            reason = _as_dict(event.get("delta")).get("stop_reason")
            if isinstance(reason, str):
                self._stop_reason = reason
            usage = _as_dict(event.get("usage"))
            self._output_tokens = _as_int(usage.get("output_tokens"), self._output_tokens)
            return [MessageCompleted(stop_reason=reason, output_tokens=self._output_tokens)]
        return []

    def _on_block_start(self, block: dict[str, Any]) -> list[StreamEvent]:
        self._block_type = block.get("type")
        if self._block_type != "tool_use":
            return []
        self._tool_id = block.get("id")
        self._tool_name = block.get("name")
        self._tool_input_parts = []
        return [ToolCallStarted(id=str(self._tool_id or ""), name=str(self._tool_name or ""))]

    def _on_block_delta(self, delta: dict[str, Any]) -> list[StreamEvent]:
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text")
            if isinstance(text, str) and text:
                self._text_parts.append(text)
                return [TextDelta(text)]
        elif delta_type == "input_json_delta":
            fragment = delta.get("partial_json")
            if isinstance(fragment, str):
                self._tool_input_parts.append(fragment)
                return [ToolInputDelta(fragment)]
        return []

    def _on_block_stop(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        if self._block_type == "tool_use" and self._tool_id and self._tool_name:
            tool_call = ToolCall(
                id=self._tool_id,
                name=self._tool_name,
                input=_parse_tool_input("".join(self._tool_input_parts), self._tool_name),
            )
            self._tool_calls.append(tool_call)
            events.append(ToolCallCompleted(tool_call))
        self._block_type = None
        self._tool_id = None
        self._tool_name = None
        self._tool_input_parts = []
        return events


def parse_lines(lines: Iterable[str]) -> StreamResult:
    parser = SseStreamParser()
    parser.feed_lines(lines)
    return parser.result()


def _parse_tool_input(raw: str, tool_name: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse input for tool {tool_name}: {raw[:200]}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Tool input for {tool_name} is not an object: {raw[:200]}")
        return {}
    return parsed


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value
