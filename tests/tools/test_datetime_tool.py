import asyncio
import unittest
from datetime import UTC, datetime

from graded_chat.tools.datetime_tool import DateTimeTool


class TestDateTimeTool(unittest.TestCase):
    def test_formats_in_configured_timezone(self) -> None:
        tool = DateTimeTool("America/New_York", clock=lambda: datetime(2025, 1, 6, 17, 5, tzinfo=UTC))

        result = asyncio.run(tool.execute({}))

        self.assertEqual("Current date and time: Monday, January 6, 2025 12:05 PM (EST)", result.text_for_model)
        self.assertIsNone(result.embedded_marker)

    def test_summer_time_and_single_digit_hour(self) -> None:
        tool = DateTimeTool("America/New_York", clock=lambda: datetime(2025, 7, 4, 13, 30, tzinfo=UTC))
        result = asyncio.run(tool.execute({"ignored": True}))
        self.assertEqual("Current date and time: Friday, July 4, 2025 9:30 AM (EDT)", result.text_for_model)

    def test_schema_takes_no_arguments(self) -> None:
        tool = DateTimeTool()
        self.assertEqual("get_datetime", tool.name)
        self.assertEqual({}, tool.input_schema["properties"])


if __name__ == "__main__":
    unittest.main()
