"""
Tests for structured logging: JSON formatting, credential redaction and
request/run correlation IDs.
"""

from __future__ import annotations

import json
import logging
import sys

from ecfr_analyzer.utils.context import get_run_id, reset_request_id, run_id_context, set_request_id
from ecfr_analyzer.utils.logging import JSONFormatter, setup_logging


def make_record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("ecfr_analyzer.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        line = json.loads(JSONFormatter(service_name="svc").format(make_record("hello")))

        assert line["msg"] == "hello"
        assert line["level"] == "INFO"
        assert line["logger"] == "ecfr_analyzer.test"
        assert line["service"] == "svc"

    def test_dsn_password_is_redacted(self):
        record = make_record("connecting to postgresql://ecfr:hunter2@db:5432/ecfr")
        line = json.loads(JSONFormatter().format(record))

        assert "hunter2" not in line["msg"]
        assert "postgresql://ecfr:[REDACTED]@db" in line["msg"]

    def test_sensitive_extra_fields_are_redacted(self):
        line = json.loads(JSONFormatter().format(make_record("x", db_password="secret", path="/api")))

        assert line["db_password"] == "[REDACTED]"
        assert line["path"] == "/api"

    def test_request_id_from_context(self):
        token = set_request_id("req-1")
        try:
            line = json.loads(JSONFormatter().format(make_record("x")))
        finally:
            reset_request_id(token)

        assert line["request_id"] == "req-1"

    def test_run_id_from_context(self):
        with run_id_context("run-42"):
            line = json.loads(JSONFormatter().format(make_record("x")))

        assert line["run_id"] == "run-42"
        assert get_run_id() is None

    def test_exception_info(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("t", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        line = json.loads(JSONFormatter().format(record))

        assert line["error_type"] == "ValueError"
        assert line["error_msg"] == "boom"
        assert "Traceback" in line["traceback"]


class TestSetupLogging:
    def test_json_handler_installed(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging(level=logging.DEBUG, json_output=True)
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.DEBUG
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])
