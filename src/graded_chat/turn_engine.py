from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger

from graded_chat import markers
from graded_chat.context_filter import build_api_message, build_current_user_message
from graded_chat.markers import ImageMarker
from graded_chat.memory.models import Message
from graded_chat.sse_parser import StreamResult, ToolCall
from graded_chat.tools.base import Tool, ToolResult


class StreamingProvider(Protocol):
    async def stream_message(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        *,
        on_text_chunk: Callable[[str], None] | None = None,
    ) -> StreamResult: ...


@dataclass(frozen=True)
class TurnResult:
    content: str
    tip: str | None
    input_tokens: int
    output_tokens: int
    model: str
    iterations: int


def display_name_for(tool_call: ToolCall, *, default_location: str = "Catonsville") -> str:
    tool_input = tool_call.input
    if tool_call.name == "search_web":
        return f"Searching: {tool_input.get('query', '')}"
    if tool_call.name == "get_weather":
        return f"Getting weather for {tool_input.get('location') or default_location}"
    if tool_call.name == "get_datetime":
        return "Checking date/time"
    return f"Using {tool_call.name}"


def _noop_text(_: str) -> None:
    pass


def _noop_activity(_: str | None) -> None:
    pass


class TurnEngine:
    """Drives one user turn to a final answer, running requested tools in between.

    The model is invoked at most ``max_iterations`` times. Tool calls of one
    iteration run one after another in the order the model issued them; a
    tool that raises or exceeds ``tool_timeout`` yields an error string as its
    result instead of aborting the turn. Transport errors propagate.
    """

    def __init__(
        self,
        *,
        provider: StreamingProvider,
        model: str,
        system_prompt: str,
        tools: Sequence[Tool] = (),
        max_iterations: int = 5,
        tool_timeout: float = 45.0,
        default_location: str = "Catonsville",
    ) -> None:
        self._provider = provider
        self._model = model
        self._system_prompt = system_prompt
        self._tool_map = {t.name: t for t in tools}
        self._converted_tools = [
            {"name": t.name, "description": t.description, "input_schema": t.input_schema} for t in tools
        ]
        self._max_iterations = max(1, max_iterations)
        self._tool_timeout = tool_timeout
        self._default_location = default_location

    @property
    def model(self) -> str:
        return self._model

    async def run(
        self,
        history: Sequence[Message],
        user_text: str,
        images: Sequence[ImageMarker] = (),
        *,
        on_text_chunk: Callable[[str], None] | None = None,
        on_tool_activity: Callable[[str | None], None] | None = None,
        model: str | None = None,
    ) -> TurnResult:
        on_text_chunk = on_text_chunk or _noop_text
        on_tool_activity = on_tool_activity or _noop_activity
        model = model or self._model

        api_messages: list[dict[str, Any]] = [build_api_message(m) for m in history]
        api_messages.append(build_current_user_message(user_text, images))

        full_response = ""
        collected_markers: list[str] = []
        input_tokens = 0
        output_tokens = 0
        iterations = 0

        def on_chunk(chunk: str) -> None:
            nonlocal full_response
            full_response += chunk
            on_text_chunk(chunk)

        while iterations < self._max_iterations:
            iterations += 1
            result = await self._provider.stream_message(
                model,
                self._system_prompt,
                api_messages,
                self._converted_tools or None,
                on_text_chunk=on_chunk,
            )
            input_tokens += result.input_tokens
            output_tokens += result.output_tokens

            if result.stop_reason == "end_turn" or not result.tool_calls:
                break

            assistant_content: list[dict[str, Any]] = []
            if result.text:
                assistant_content.append({"type": "text", "text": result.text})
            assistant_content.extend(call.to_block() for call in result.tool_calls)
            api_messages.append({"role": "assistant", "content": assistant_content})

            tool_results: list[dict[str, Any]] = []
            for call in result.tool_calls:
                on_tool_activity(display_name_for(call, default_location=self._default_location))
                tool_result = await self._execute_tool(call)
                input_tokens += tool_result.overhead_input_tokens
                output_tokens += tool_result.overhead_output_tokens
                tool_results.append(
                    {"type": "tool_result", "tool_use_id": call.id, "content": tool_result.text_for_model}
                )
                if tool_result.embedded_marker:
                    collected_markers.append(tool_result.embedded_marker)

            api_messages.append({"role": "user", "content": tool_results})
            on_tool_activity(None)

            if full_response:
                on_chunk("\n\n")
        else:
            logger.warning(f"Tool loop stopped after {self._max_iterations} model invocations")

        cleaned, tip = markers.extract_and_strip_tip(full_response)
        if tip:
            logger.info(f"Tip: {tip}")

        return TurnResult(
            content=markers.prefix_markers(collected_markers, cleaned),
            tip=tip,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
            iterations=iterations,
        )

    async def _execute_tool(self, call: ToolCall) -> ToolResult:
        tool = self._tool_map.get(call.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool {call.name}")
            return ToolResult(f"Unknown tool: {call.name}")

        try:
            return await asyncio.wait_for(tool.execute(call.input), timeout=self._tool_timeout)
        except TimeoutError:
            logger.warning(f"Tool {call.name} timed out after {self._tool_timeout}s")
            return ToolResult(f'Error executing tool "{call.name}": timed out after {self._tool_timeout:g} seconds')
        except Exception as ex:
            logger.warning(f"Tool {call.name} failed: {ex}")
            return ToolResult(f'Error executing tool "{call.name}": {ex}')
