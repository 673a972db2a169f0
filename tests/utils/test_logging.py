"""Tests for logging setup and formatters."""

import json
import logging

from reconciler.utils.logging import ConsoleFormatter, JSONFormatter, LogContext, get_logger, setup_logging


def make_record(message="Applying create", **extra):
    record = logging.LogRecord("reconciler.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_includes_structured_fields(self):
        line = JSONFormatter().format(make_record(run_id="abc123", resource_id="network.vpc", action="create"))
        data = json.loads(line)

        assert data["message"] == "Applying create"
        assert data["level"] == "INFO"
        assert data["run_id"] == "abc123"
        assert data["resource_id"] == "network.vpc"
        assert data["action"] == "create"
        assert "attempt" not in data

    def test_console_prefixes_resource(self):
        line = ConsoleFormatter(use_color=False).format(make_record(resource_id="network.vpc"))

        assert "[network.vpc] Applying create" in line
        assert "\033[" not in line

    def test_console_marks_retries(self):
        formatter = ConsoleFormatter(use_color=False)

        assert formatter.format(make_record("Retrying create", attempt=3)).endswith("Retrying create (attempt 3)")
        assert formatter.format(make_record(attempt=1)).endswith(" Applying create")

    def test_console_colours_level(self):
        line = ConsoleFormatter(use_color=True).format(make_record())

        assert line.split(" ", 1)[1].startswith(ConsoleFormatter.COLORS["INFO"] + "INFO")


class TestLogContext:
    def test_fields_added_inside_context_only(self, caplog):
        logger = get_logger("reconciler.test")

        with caplog.at_level(logging.INFO):
            with LogContext(run_id="run-1"):
                logger.info("inside")
            logger.info("outside")

        inside, outside = caplog.records
        assert inside.run_id == "run-1"
        assert not hasattr(outside, "run_id")


class TestSetupLogging:
    def test_writes_json_lines(self, tmp_path, restore_root_logger):
        setup_logging("debug", log_dir=str(tmp_path))
        get_logger("reconciler.test").debug("hello", extra={"resource_id": "network.vpc"})
        for handler in logging.getLogger().handlers:
            handler.flush()

        files = list(tmp_path.glob("reconciler-*.jsonl"))
        assert len(files) == 1
        data = json.loads(files[0].read_text().strip().splitlines()[-1])
        assert data["message"] == "hello"
        assert data["resource_id"] == "network.vpc"

    def test_console_only(self, restore_root_logger):
        setup_logging("warning", log_dir=None)

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
