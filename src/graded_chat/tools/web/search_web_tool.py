from dataclasses import dataclass
from typing import Any

import httpx

from graded_chat.errors import ConfigurationError
from graded_chat.tools.base import ToolResult
from graded_chat.tools.web.search_provider import SearchProvider, SearchResponse

_MAX_RESULTS = 6


def format_search_response(response: SearchResponse) -> str:
    parts: list[str] = []
    if response.answer:
        parts.append(f"[Summary] {response.answer}\n")
    for i, result in enumerate(response.results, 1):
        parts.append(f"[{i}] {result.title}\nURL: {result.url}\n{result.content}\n")
    if not parts:
        return "No search results found."
    return "\n".join(parts)


@dataclass(frozen=True)
class SearchOutcome:
    """Text for the model plus whether the search produced any results."""

    text: str
    found: bool


async def run_search(provider: SearchProvider, query: str, max_results: int = _MAX_RESULTS) -> SearchOutcome:
    """Search and format, turning every failure into text for the model."""
    try:
        response = await provider.search(query, max_results)
    except ConfigurationError:
        return SearchOutcome(f"Web search not available: {provider.provider_name} API key not configured.", False)
    except httpx.TimeoutException:
        return SearchOutcome("Search error: request timed out", False)
    except httpx.HTTPStatusError as ex:
        return SearchOutcome(f"Search failed with HTTP {ex.response.status_code}", False)
    except (httpx.HTTPError, ValueError) as ex:
        return SearchOutcome(f"Search error: {ex}", False)
    return SearchOutcome(format_search_response(response), bool(response.answer or response.results))


class SearchWebTool:
    def __init__(self, provider: SearchProvider) -> None:
        self._provider = provider

    @property
    def name(self) -> str:
        return "search_web"

    @property
    def description(self) -> str:
        return (
            "Search the web for current information on any topic. Use this when you need "
            "up-to-date information about news, sports, current events, or any topic that "
            "changes frequently. Don't deflect with 'I don't have real-time data', use this tool."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query. Be specific and include relevant context.",
                },
            },
            "required": ["query"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> ToolResult:
        query = str(tool_input.get("query") or "").strip()
        if not query:
            return ToolResult("No search query provided.")
        outcome = await run_search(self._provider, query)
        return ToolResult(outcome.text)
