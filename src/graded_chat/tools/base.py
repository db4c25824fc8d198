from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ToolResult:
    """Plain text for the model, plus an optional marker to embed in the saved reply."""

    text_for_model: str
    embedded_marker: str | None = None
    overhead_input_tokens: int = 0
    overhead_output_tokens: int = 0


@runtime_checkable
class Tool(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def input_schema(self) -> dict[str, Any]: ...

    async def execute(self, tool_input: dict[str, Any]) -> ToolResult: ...
