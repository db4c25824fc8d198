import asyncio
import json
import unittest

import httpx

from graded_chat.credentials import TAVILY, StaticCredentialStore
from graded_chat.tools.web.search_web_tool import SearchWebTool
from graded_chat.tools.web.tavily_search_provider import TavilySearchProvider


class TestSearchWebTool(unittest.TestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []

    def _tool(self, handler, api_key: str | None = "tvly-test") -> SearchWebTool:
        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        credentials = StaticCredentialStore({TAVILY: api_key} if api_key else {})
        return SearchWebTool(TavilySearchProvider(credentials, transport=httpx.MockTransport(recording_handler)))

    # -- execute --

    def test_formats_answer_and_results(self) -> None:
        payload = {
            "answer": "The Orioles won 5-3.",
            "results": [
                {"title": "Box score", "url": "https://example.test/box", "content": "Final: 5-3"},
                {"title": None, "url": None, "content": None},
            ],
        }
        tool = self._tool(lambda request: httpx.Response(200, json=payload))

        result = asyncio.run(tool.execute({"query": "orioles score"}))

        self.assertEqual(
            "[Summary] The Orioles won 5-3.\n\n"
            "[1] Box score\nURL: https://example.test/box\nFinal: 5-3\n\n"
            "[2] No title\nURL: No URL\nNo content\n",
            result.text_for_model,
        )
        body = json.loads(self.requests[0].content)
        self.assertEqual("orioles score", body["query"])
        self.assertEqual("tvly-test", body["api_key"])
        self.assertEqual(6, body["max_results"])
        self.assertTrue(body["include_answer"])

    def test_empty_results(self) -> None:
        tool = self._tool(lambda request: httpx.Response(200, json={"results": []}))
        result = asyncio.run(tool.execute({"query": "nothing"}))
        self.assertEqual("No search results found.", result.text_for_model)

    def test_http_error_becomes_text(self) -> None:
        tool = self._tool(lambda request: httpx.Response(432, json={"detail": "quota"}))
        result = asyncio.run(tool.execute({"query": "x"}))
        self.assertEqual("Search failed with HTTP 432", result.text_for_model)

    def test_timeout_becomes_text(self) -> None:
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = asyncio.run(self._tool(slow).execute({"query": "x"}))
        self.assertEqual("Search error: request timed out", result.text_for_model)

    def test_missing_key_makes_no_request(self) -> None:
        tool = self._tool(lambda request: httpx.Response(200, json={}), api_key=None)
        result = asyncio.run(tool.execute({"query": "x"}))
        self.assertEqual("Web search not available: Tavily API key not configured.", result.text_for_model)
        self.assertEqual([], self.requests)

    def test_blank_query(self) -> None:
        tool = self._tool(lambda request: httpx.Response(200, json={}))
        result = asyncio.run(tool.execute({"query": "  "}))
        self.assertEqual("No search query provided.", result.text_for_model)
        self.assertEqual([], self.requests)

    # -- properties --

    def test_requires_query(self) -> None:
        tool = self._tool(lambda request: httpx.Response(200, json={}))
        self.assertEqual("search_web", tool.name)
        self.assertEqual(["query"], tool.input_schema["required"])


if __name__ == "__main__":
    unittest.main()
