"""Tests for CLI logging setup."""
import json
import logging

from telemetry_reporter.main import build_formatter


def make_record(message):
    return logging.LogRecord(
        name="telemetry_reporter.config",
        level=logging.ERROR,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None
    )


def test_json_format_escapes_messages():
    formatter = build_formatter("json")
    message = 'Configuration validation failed: field "prefix"\nsecond line'

    entry = json.loads(formatter.format(make_record(message)))

    assert entry["message"] == message
    assert entry["level"] == "ERROR"
    assert entry["logger"] == "telemetry_reporter.config"
    assert "time" in entry


def test_text_format():
    line = build_formatter("text").format(make_record("flushed"))

    assert "| ERROR    | telemetry_reporter.config | flushed" in line
