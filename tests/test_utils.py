"""
Test Suite for Utilities

Unit tests for utility functions including
logging, configuration, file operations and the status CLI.
"""

import io
import json
import logging
import os
import shutil
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from resilience.error_collector import ErrorCollector
from scripts.healing_status import main as status_main
from utils.config import Settings, load_config, settings
from utils.file_utils import FileUtils
from utils.logger import StructuredLogger, StructuredFormatter


class TestStructuredLogger(unittest.TestCase):
    """Test cases for StructuredLogger class."""

    def setUp(self):
        """Set up test fixtures."""
        self.logger = StructuredLogger("test_logger", "DEBUG")

    def test_logger_initialization(self):
        """Test logger initialization."""
        self.assertEqual(self.logger.logger.name, "test_logger")
        self.assertEqual(self.logger.logger.level, logging.DEBUG)

    def test_log_methods_exist(self):
        """Test that all log methods exist."""
        for method in ('info', 'error', 'warning', 'debug', 'exception'):
            self.assertTrue(hasattr(self.logger, method))

    def test_handlers_not_duplicated(self):
        """Test that re-creating a logger keeps a single handler set."""
        StructuredLogger("test_logger", "DEBUG")
        self.assertEqual(len(self.logger.logger.handlers), 1)


class TestStructuredFormatter(unittest.TestCase):
    """Test cases for StructuredFormatter class."""

    def setUp(self):
        """Set up test fixtures."""
        self.formatter = StructuredFormatter()

    def test_formatter_creates_json(self):
        """Test that formatter creates JSON output."""
        record = logging.LogRecord(
            name="test", level=logging.INFO, pathname="", lineno=0,
            msg="Test message", args=(), exc_info=None
        )

        parsed = json.loads(self.formatter.format(record))

        self.assertIn('timestamp', parsed)
        self.assertEqual(parsed['level'], "INFO")
        self.assertEqual(parsed['message'], "Test message")

    def test_formatter_includes_extra_fields(self):
        """Test that structured fields are part of the payload."""
        record = logging.LogRecord(
            name="test", level=logging.WARNING, pathname="", lineno=0,
            msg="Captured", args=(), exc_info=None
        )
        record.error_id = "err_1"
        record.category = "timeout"

        parsed = json.loads(self.formatter.format(record))

        self.assertEqual(parsed['error_id'], "err_1")
        self.assertEqual(parsed['category'], "timeout")
        self.assertNotIn('lineno', parsed)


class TestSettings(unittest.TestCase):
    """Test cases for Settings class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_settings_defaults(self):
        """Test settings initialization."""
        settings = Settings()
        self.assertIsNotNone(settings.app_name)
        self.assertEqual(settings.max_errors, 1000)
        self.assertEqual(settings.similarity_threshold, 0.7)
        self.assertEqual(settings.pattern_min_confidence, 0.6)
        self.assertTrue(settings.auto_heal_enabled)

    def test_out_of_range_value_rejected(self):
        """Test that field constraints are enforced."""
        with self.assertRaises(ValueError):
            Settings(similarity_threshold=1.5)

    def test_environment_override(self):
        """Test SELFHEAL_ prefixed environment variables."""
        os.environ['SELFHEAL_MAX_PATTERNS'] = "42"
        try:
            self.assertEqual(Settings().max_patterns, 42)
        finally:
            del os.environ['SELFHEAL_MAX_PATTERNS']

    def test_load_config_from_yaml(self):
        """Test layering YAML values and explicit overrides."""
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("self_healing:\n  max_errors: 50\n  heal_max_alternatives: 3\n")

        settings = load_config(config_path, heal_max_alternatives=2)

        self.assertEqual(settings.max_errors, 50)
        self.assertEqual(settings.heal_max_alternatives, 2)

    def test_load_config_top_level_mapping(self):
        """Test a YAML file without a self_healing section."""
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("auto_persist: false\n")

        self.assertFalse(load_config(config_path).auto_persist)

    def test_load_config_rejects_non_mapping(self):
        """Test that a YAML list is refused."""
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("- one\n- two\n")

        with self.assertRaises(ValueError):
            load_config(config_path)


class TestFileUtils(unittest.TestCase):
    """Test cases for FileUtils class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.json_file = os.path.join(self.temp_dir, "nested", "test.json")

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_ensure_directory(self):
        """Test directory creation."""
        new_dir = os.path.join(self.temp_dir, "new_directory")
        FileUtils.ensure_directory(new_dir)
        self.assertTrue(os.path.exists(new_dir))

    def test_write_and_read_json(self):
        """Test JSON write and read operations."""
        test_data = {"key": "value", "number": 42}

        FileUtils.write_json(self.json_file, test_data)

        self.assertTrue(FileUtils.file_exists(self.json_file))
        self.assertEqual(FileUtils.read_json(self.json_file), test_data)

    def test_write_json_leaves_no_temporary_files(self):
        """Test that the atomic write cleans up after itself."""
        FileUtils.write_json(self.json_file, {"a": 1})
        FileUtils.write_json(self.json_file, {"a": 2})

        self.assertEqual(os.listdir(os.path.dirname(self.json_file)), ["test.json"])
        self.assertEqual(FileUtils.read_json(self.json_file), {"a": 2})

    def test_file_exists(self):
        """Test file existence check."""
        self.assertFalse(FileUtils.file_exists(self.json_file))
        self.assertFalse(FileUtils.file_exists(self.temp_dir))


class TestHealingStatus(unittest.TestCase):
    """Test cases for the status command line tool."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.errors_file = os.path.join(self.temp_dir, "errors.json")
        self.patterns_file = os.path.join(self.temp_dir, "patterns.json")

        collector = ErrorCollector({'persist_path': self.errors_file, 'auto_persist': False})
        record = collector.capture("click", "Element not found: #a", {'selector': "#a"})
        collector.capture("navigate", "Navigation failed")
        collector.mark_resolved(record.id, {'success': True})
        collector.persist()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _run(self, *extra):
        output = io.StringIO()
        with redirect_stdout(output):
            code = status_main(["--errors-file", self.errors_file,
                                "--patterns-file", self.patterns_file, *extra])
        return code, output.getvalue()

    def test_json_output(self):
        """Test machine readable statistics."""
        code, output = self._run("--json")

        status = json.loads(output)
        self.assertEqual(code, 0)
        self.assertEqual(status['errors']['stored_errors'], 2)
        self.assertEqual(status['errors']['resolution_rate'], 100.0)
        self.assertEqual(status['patterns']['total_patterns'], 0)
        self.assertEqual(len(status['recent_errors']), 2)

    def test_text_output(self):
        """Test human readable report."""
        code, output = self._run()

        self.assertEqual(code, 0)
        self.assertIn("Self-Healing Status", output)
        self.assertIn("Resolution rate:   100.0%", output)
        self.assertIn("Match rate:        N/A", output)
        self.assertIn("selector-not-found", output)

    def test_version_flag(self):
        """Test that --version prints the application name and version."""
        output = io.StringIO()
        with redirect_stdout(output), self.assertRaises(SystemExit) as ctx:
            status_main(["--version"])

        self.assertEqual(ctx.exception.code, 0)
        self.assertEqual(output.getvalue().strip(), f"{settings.app_name} {settings.app_version}")


if __name__ == "__main__":
    unittest.main()
