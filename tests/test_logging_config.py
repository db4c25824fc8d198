import io
import json
import shutil
import unittest
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

from loguru import logger

from graded_chat.logging_config import ConsoleLogConsumer, FileLogConsumer, build_consumer, setup_logging

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class LoggingConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"logging-{uuid4().hex}"

    def tearDown(self) -> None:
        logger.remove()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def test_build_consumer(self) -> None:
        self.assertIsInstance(build_consumer({"type": "console"}), ConsoleLogConsumer)
        self.assertIsInstance(build_consumer({"type": "file", "path": "x.log", "level": "DEBUG"}), FileLogConsumer)
        self.assertIsNone(build_consumer({"type": "syslog"}))

    def test_file_consumer_writes_at_its_level(self) -> None:
        path = self._tmp_dir / "chat.log"

        descriptions = setup_logging("INFO", [{"type": "file", "path": str(path), "level": "warning"}])
        logger.info("quiet")
        logger.warning("loud")
        logger.remove()

        self.assertEqual([f"file ({path}, WARNING)"], descriptions)
        text = path.read_text(encoding="utf-8")
        self.assertIn("loud", text)
        self.assertNotIn("quiet", text)

    def test_console_consumer_uses_stderr(self) -> None:
        stderr = io.StringIO()
        with patch("sys.stderr", stderr):
            descriptions = setup_logging("DEBUG", [{"type": "console", "colorize": False}, {"type": "bogus"}])
            logger.debug("hello stderr")
            logger.remove()

        self.assertEqual(["console (stderr, DEBUG)"], descriptions)
        self.assertIn("hello stderr", stderr.getvalue())

    def test_serialized_file_writes_json_lines(self) -> None:
        path = self._tmp_dir / "chat.jsonl"

        descriptions = setup_logging("INFO", [{"type": "file", "path": str(path), "serialize": True}])
        logger.info("turn finished")
        logger.remove()

        self.assertEqual([f"jsonl ({path}, INFO)"], descriptions)
        record = json.loads(path.read_text(encoding="utf-8").splitlines()[0])
        self.assertEqual("turn finished", record["record"]["message"])

    def test_console_can_be_limited_to_one_package(self) -> None:
        stderr = io.StringIO()
        with patch("sys.stderr", stderr):
            descriptions = setup_logging("INFO", [{"type": "console", "colorize": False, "only": "graded_chat"}])
            logger.info("from the tests")
            logger.remove()

        self.assertEqual(["console (stderr, INFO, graded_chat only)"], descriptions)
        self.assertEqual("", stderr.getvalue())


if __name__ == "__main__":
    unittest.main()
