import httpx

from graded_chat.credentials import TAVILY, CredentialStore
from graded_chat.errors import ConfigurationError
from graded_chat.tools.web.search_provider import SearchResponse, SearchResult

_TAVILY_SEARCH_URL = "https://api.tavily.com/search"
_TIMEOUT_SECONDS = 30


class TavilySearchProvider:
    def __init__(self, credentials: CredentialStore, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._credentials = credentials
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "Tavily"

    async def search(self, query: str, max_results: int) -> SearchResponse:
        api_key = self._credentials.get_credential(TAVILY)
        if not api_key:
            raise ConfigurationError("Tavily API key not configured")

        body = {
            "api_key": api_key,
            "query": query,
            "search_depth": "advanced",
            "include_answer": True,
            "max_results": max_results,
        }

        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS, transport=self._transport) as client:
            response = await client.post(_TAVILY_SEARCH_URL, json=body)

        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code} from Tavily Search API",
                request=response.request,
                response=response,
            )

        data = response.json()
        raw_results = data.get("results") or []

        return SearchResponse(
            answer=data.get("answer") or "",
            results=[
                SearchResult(
                    title=r.get("title") or "No title",
                    url=r.get("url") or "No URL",
                    content=r.get("content") or "No content",
                )
                for r in raw_results[:max_results]
            ],
        )
