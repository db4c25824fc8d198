from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from graded_chat.credentials import TAVILY
from graded_chat.tools.base import Tool
from graded_chat.tools.datetime_tool import DateTimeTool


@dataclass(frozen=True)
class ToolGroup:
    enabled: Callable[[dict], bool]
    build: Callable[[dict], list[Tool]]


def _always(_: dict) -> bool:
    return True


def _base_tools(ctx: dict) -> list[Tool]:
    return [DateTimeTool(ctx["timezone"])]


def _search_enabled(ctx: dict) -> bool:
    return bool(ctx["credentials"].get_credential(TAVILY))


def _search_tools(ctx: dict) -> list[Tool]:
    from graded_chat.tools.weather_tool import WeatherTool
    from graded_chat.tools.web.search_web_tool import SearchWebTool
    from graded_chat.tools.web.tavily_search_provider import TavilySearchProvider

    search_provider = TavilySearchProvider(ctx["credentials"])
    tools: list[Tool] = [SearchWebTool(search_provider)]
    if ctx.get("extractor") is not None:
        tools.append(
            WeatherTool(
                search_provider,
                ctx["extractor"],
                extraction_model=ctx["extraction_model"],
                default_location=ctx["default_location"],
            )
        )
    return tools


_GROUPS = [
    ToolGroup(enabled=_always, build=_base_tools),
    ToolGroup(enabled=_search_enabled, build=_search_tools),
]


def get_all(
    credentials,
    *,
    extractor=None,
    extraction_model: str = "claude-sonnet-4-5-20250929",
    timezone: str = "America/New_York",
    default_location: str = "Catonsville, Maryland",
) -> list[Tool]:
    ctx = {
        "credentials": credentials,
        "extractor": extractor,
        "extraction_model": extraction_model,
        "timezone": timezone,
        "default_location": default_location,
    }

    tools: list[Tool] = []
    for group in _GROUPS:
        if group.enabled(ctx):
            tools.extend(group.build(ctx))
    return tools
