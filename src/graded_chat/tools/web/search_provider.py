from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    content: str


@dataclass(frozen=True)
class SearchResponse:
    answer: str = ""
    results: list[SearchResult] = field(default_factory=list)


@runtime_checkable
class SearchProvider(Protocol):
    @property
    def provider_name(self) -> str: ...

    async def search(self, query: str, max_results: int) -> SearchResponse:
        """Return search results. Raises on errors (caller handles formatting)."""
        ...
