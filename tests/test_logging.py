"""
Tests for logging configuration and request-id stamping.
"""

import json
import logging

from crm_reminders.utils.context import request_id_scope
from crm_reminders.utils.logging import (
    DEFAULT_LOGGING_CONFIG,
    InterceptHandler,
    _stamp_request_id,
    file_sink_options,
    load_logging_config,
)


class TestLoggingConfig:
    def test_missing_file_yields_defaults(self, tmp_path):
        section = load_logging_config(tmp_path / "absent.json")

        assert section == DEFAULT_LOGGING_CONFIG["logger"]

    def test_environment_section_overrides_defaults(self, tmp_path):
        path = tmp_path / "logging_config.json"
        path.write_text(json.dumps({
            "logger": {"level": "debug"},
            "production": {"filename": "prod.json", "file_format": "json", "use_json_logs": True},
        }))

        section = load_logging_config(path, "production")

        assert section["filename"] == "prod.json"
        assert section["rotation"] == DEFAULT_LOGGING_CONFIG["logger"]["rotation"]

    def test_unknown_environment_falls_back_to_logger_section(self, tmp_path):
        path = tmp_path / "logging_config.json"
        path.write_text(json.dumps({"logger": {"level": "debug"}}))

        assert load_logging_config(path, "staging")["level"] == "debug"


class TestFileSink:
    def test_json_logs_are_serialized(self):
        section = dict(DEFAULT_LOGGING_CONFIG["logger"], file_format="json", use_json_logs=True)

        options = file_sink_options(section)

        assert options["serialize"] is True
        assert "format" not in options

    def test_text_logs_use_file_format(self):
        section = dict(DEFAULT_LOGGING_CONFIG["logger"], level="warning")

        options = file_sink_options(section)

        assert options["format"] == section["file_format"]
        assert options["level"] == "WARNING"
        assert options["sink"].startswith("logs/")
        assert options["sink"].endswith("-crm-reminders.log")


class TestRequestIdStamping:
    def test_active_cycle_id_replaces_bound_id(self):
        record = {"extra": {"request_id": "app"}}

        with request_id_scope("cycle-42"):
            _stamp_request_id(record)

        assert record["extra"]["request_id"] == "cycle-42"

    def test_bound_id_is_kept_outside_a_cycle(self):
        record = {"extra": {"request_id": "app"}}

        _stamp_request_id(record)

        assert record["extra"]["request_id"] == "app"


def test_stdlib_records_reach_loguru():
    from loguru import logger

    messages = []
    sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="INFO")
    try:
        stdlib_logger = logging.getLogger("crm_reminders.stdlib_test")
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(logging.INFO)
        stdlib_logger.info("worker ready")
    finally:
        logger.remove(sink_id)

    assert messages == ["worker ready"]
