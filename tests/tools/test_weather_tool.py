import asyncio
import json
import unittest

from graded_chat import markers
from graded_chat.errors import ConfigurationError, TransportError
from graded_chat.tools.weather_tool import WeatherTool, weather_from_extraction
from graded_chat.tools.web.search_provider import SearchResponse, SearchResult


class _FakeSearch:
    provider_name = "Fake"

    def __init__(self, response: SearchResponse | None = None, error: Exception | None = None) -> None:
        self._response = response or SearchResponse(
            answer="Sunny and 72F in Paris.",
            results=[SearchResult("Paris weather", "https://example.test/paris", "72F, humidity 40%")],
        )
        self._error = error
        self.queries: list[str] = []

    async def search(self, query: str, max_results: int) -> SearchResponse:
        self.queries.append(query)
        if self._error is not None:
            raise self._error
        return self._response


class _FakeExtractor:
    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self._reply = reply
        self._error = error
        self.calls: list[dict] = []

    async def single_shot(self, model, system_prompt, messages, *, max_tokens=256):
        self.calls.append({"model": model, "messages": messages, "max_tokens": max_tokens})
        if self._error is not None:
            raise self._error
        return self._reply, 250, 60


_EXTRACTED = {
    "city": "Paris",
    "temp": 72,
    "feelsLike": 70.5,
    "conditions": "Clear",
    "humidity": 40,
    "windSpeed": 6.2,
    "iconCode": "01d",
    "high": 75,
    "low": 58,
    "utcOffsetHours": 2,
    "hourly": [{"hour": "Now", "temp": 72, "conditions": "Clear", "iconCode": "01d", "pop": 0.0}],
}


class TestWeatherTool(unittest.TestCase):
    def _tool(self, search: _FakeSearch, extractor: _FakeExtractor) -> WeatherTool:
        return WeatherTool(search, extractor, extraction_model="claude-haiku-4-5-20251001",
                           default_location="Catonsville, Maryland")

    def test_structured_weather_is_embedded_as_marker(self) -> None:
        extractor = _FakeExtractor("```json\n" + json.dumps(_EXTRACTED) + "\n```")
        tool = self._tool(_FakeSearch(), extractor)

        result = asyncio.run(tool.execute({"location": "Paris"}))

        self.assertEqual(
            "Current Weather for Paris:\n"
            "• Conditions: Clear\n"
            "• Temperature: 72.0°F (feels like 70.5°F)\n"
            "• High: 75°F / Low: 58°F\n"
            "• Humidity: 40%\n"
            "• Wind Speed: 6.2 mph",
            result.text_for_model,
        )
        weather = markers.extract_weather(result.embedded_marker)[0]
        self.assertEqual("Paris", weather.city)
        self.assertEqual(7200, weather.timezone_offset)
        self.assertEqual("Now", weather.hourly_forecast[0].hour)
        self.assertEqual((250, 60), (result.overhead_input_tokens, result.overhead_output_tokens))
        self.assertEqual("claude-haiku-4-5-20251001", extractor.calls[0]["model"])
        self.assertIn("Sunny and 72F in Paris.", extractor.calls[0]["messages"][0]["content"])

    def test_empty_location_uses_default(self) -> None:
        search = _FakeSearch()
        asyncio.run(self._tool(search, _FakeExtractor("{}")).execute({"location": "null"}))
        self.assertIn("Catonsville, Maryland", search.queries[0])

    def test_non_json_extraction_falls_back_to_search_text(self) -> None:
        result = asyncio.run(self._tool(_FakeSearch(), _FakeExtractor("It is sunny.")).execute({"location": "Paris"}))
        self.assertTrue(result.text_for_model.startswith("[Summary] Sunny and 72F in Paris."))
        self.assertIsNone(result.embedded_marker)

    def test_extractor_failure_falls_back_to_search_text(self) -> None:
        extractor = _FakeExtractor(error=TransportError.from_status(529, "overloaded"))
        result = asyncio.run(self._tool(_FakeSearch(), extractor).execute({"location": "Paris"}))
        self.assertIsNone(result.embedded_marker)
        self.assertIn("72F, humidity 40%", result.text_for_model)

    def test_search_unavailable_skips_extraction(self) -> None:
        extractor = _FakeExtractor("{}")
        search = _FakeSearch(error=ConfigurationError("no key"))

        result = asyncio.run(self._tool(search, extractor).execute({}))

        self.assertEqual("Web search not available: Fake API key not configured.", result.text_for_model)
        self.assertEqual([], extractor.calls)

    def test_results_mentioning_not_available_are_still_extracted(self) -> None:
        search = _FakeSearch(SearchResponse(
            answer="Hourly data not available; currently 72F in Paris.",
            results=[SearchResult("Search Paris", "https://example.test/paris", "72F")],
        ))
        extractor = _FakeExtractor(json.dumps(_EXTRACTED))

        result = asyncio.run(self._tool(search, extractor).execute({"location": "Paris"}))

        self.assertEqual(1, len(extractor.calls))
        self.assertIsNotNone(result.embedded_marker)

    def test_empty_search_results_skip_extraction(self) -> None:
        extractor = _FakeExtractor("{}")
        search = _FakeSearch(SearchResponse(answer="", results=[]))

        result = asyncio.run(self._tool(search, extractor).execute({"location": "Nowhere"}))

        self.assertEqual("No search results found.", result.text_for_model)
        self.assertEqual([], extractor.calls)


class TestWeatherFromExtraction(unittest.TestCase):
    def test_missing_fields_get_defaults(self) -> None:
        weather = weather_from_extraction({"temp": 50}, "Catonsville", 1_700_000_000)

        self.assertEqual("Catonsville", weather.city)
        self.assertEqual(50.0, weather.feels_like)
        self.assertEqual("Unknown", weather.conditions)
        self.assertEqual("03d", weather.icon_code)
        self.assertIsNone(weather.high)
        self.assertIsNone(weather.timezone_offset)
        self.assertEqual([], weather.hourly_forecast)
        self.assertEqual(1_700_000_000, weather.observation_time)


if __name__ == "__main__":
    unittest.main()
