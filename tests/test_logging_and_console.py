import io
import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from loguru import logger

from chat_stream_client.console import Spinner
from chat_stream_client.logging_config import ConsoleLogConsumer, setup_logging

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class SetupLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"logging-{uuid4().hex}"

    def tearDown(self) -> None:
        logger.remove()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def test_registers_configured_consumers(self) -> None:
        log_path = self._tmp_dir / "chat.log"
        descriptions = setup_logging(
            "DEBUG",
            [
                {"type": "console", "level": "WARNING"},
                {"type": "file", "path": str(log_path)},
                {"type": "carrier-pigeon"},
            ],
        )
        self.assertEqual(["console (stderr, WARNING)", f"file ({log_path}, DEBUG)"], descriptions)

        logger.debug("stream started")
        logger.remove()
        self.assertIn("stream started", log_path.read_text(encoding="utf-8"))

    def test_console_stream_and_case_insensitive_levels(self) -> None:
        out = io.StringIO()
        consumer = ConsoleLogConsumer(stream=out)
        consumer.register("INFO")
        self.assertEqual("console (stream, INFO)", consumer.describe("INFO"))

        descriptions = setup_logging("info", [{"type": "FILE", "path": str(self._tmp_dir / "chat.log")}])
        self.assertEqual([f"file ({self._tmp_dir / 'chat.log'}, INFO)"], descriptions)

        logger.remove()
        consumer.register("INFO")
        logger.debug("hidden")
        logger.info("réponse reçue")
        self.assertNotIn("hidden", out.getvalue())
        self.assertIn("réponse reçue", out.getvalue())
        self.assertNotIn("\x1b[", out.getvalue())


class SpinnerTests(unittest.TestCase):
    def test_stop_clears_the_line_and_is_idempotent(self) -> None:
        out = io.StringIO()
        spinner = Spinner(prefix="assistant> ", stream=out)
        spinner.start()
        spinner.stop()
        spinner.stop()
        self.assertFalse(spinner.running)
        self.assertTrue(out.getvalue().endswith("\rassistant> "))


if __name__ == "__main__":
    unittest.main()
