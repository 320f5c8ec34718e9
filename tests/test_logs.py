"""Tests for economy.logs."""

import json
import logging

from economy.logs import JSONFormatter, configure_logging


def test_json_formatter_includes_request_fields() -> None:
    record = logging.LogRecord("economy.server", logging.INFO, __file__, 1, "request", None, None)
    record.method = "GET"
    record.status_code = 200
    line = json.loads(JSONFormatter().format(record))
    assert line["level"] == "info"
    assert line["logger"] == "economy.server"
    assert line["msg"] == "request"
    assert line["method"] == "GET"
    assert line["status_code"] == 200
    assert "duration_ms" not in line


def test_configure_logging_replaces_handlers() -> None:
    logger = logging.getLogger("moltswarm.test")
    logger.addHandler(logging.NullHandler())
    configure_logging("debug", json_format=True, logger=logger)
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, JSONFormatter)
    assert logger.level == logging.DEBUG
