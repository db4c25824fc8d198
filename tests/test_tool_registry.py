import unittest

from graded_chat import tool_registry
from graded_chat.credentials import TAVILY, StaticCredentialStore


class _Extractor:
    async def single_shot(self, model, system_prompt, messages, *, max_tokens=256):
        return "{}", 0, 0


class ToolRegistryTests(unittest.TestCase):
    def test_datetime_only_without_search_key(self) -> None:
        tools = tool_registry.get_all(StaticCredentialStore(), extractor=_Extractor())
        self.assertEqual(["get_datetime"], [t.name for t in tools])

    def test_search_key_enables_search_and_weather(self) -> None:
        tools = tool_registry.get_all(StaticCredentialStore({TAVILY: "tvly"}), extractor=_Extractor())
        self.assertEqual(["get_datetime", "search_web", "get_weather"], [t.name for t in tools])

    def test_weather_needs_an_extractor(self) -> None:
        tools = tool_registry.get_all(StaticCredentialStore({TAVILY: "tvly"}))
        self.assertEqual(["get_datetime", "search_web"], [t.name for t in tools])

    def test_weather_description_names_default_location(self) -> None:
        tools = tool_registry.get_all(
            StaticCredentialStore({TAVILY: "tvly"}), extractor=_Extractor(), default_location="Ellicott City"
        )
        self.assertIn("Ellicott City", tools[-1].description)


if __name__ == "__main__":
    unittest.main()
