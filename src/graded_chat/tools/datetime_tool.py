from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from graded_chat.tools.base import ToolResult


class DateTimeTool:
    def __init__(self, timezone: str = "America/New_York", clock: Callable[[], datetime] | None = None) -> None:
        self._zone = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def name(self) -> str:
        return "get_datetime"

    @property
    def description(self) -> str:
        return (
            "Get the current date and time in the user's timezone. "
            "Use this when you need to know what day or time it is."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, tool_input: dict[str, Any]) -> ToolResult:
        now = self._clock().astimezone(self._zone)
        hour = now.strftime("%I").lstrip("0") or "12"
        stamp = f"{now.strftime('%A, %B')} {now.day}, {now.year} {hour}:{now.strftime('%M %p')}"
        return ToolResult(f"Current date and time: {stamp} ({now.tzname()})")
