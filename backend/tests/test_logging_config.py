"""
Unit tests for logging filters and formatter
"""
import json
import logging

from tierstake.core.logging_config import (ContextualFormatter,
                                           LoggingConfig,
                                           SensitiveDataFilter)


def _record(msg, **extra):
    record = logging.LogRecord("tierstake.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_sensitive_filter_masks_signatures():
    record = _record('approve signature="0xdeadbeef" token=abc123')
    SensitiveDataFilter().filter(record)
    assert "0xdeadbeef" not in record.msg
    assert "abc123" not in record.msg


def test_sensitive_filter_disabled():
    record = _record("signature=0xdeadbeef")
    SensitiveDataFilter(enabled=False).filter(record)
    assert record.msg == "signature=0xdeadbeef"


def test_formatter_includes_context_and_extra():
    LoggingConfig.set_context(request_id="req-1", caller="0xabc")
    try:
        output = json.loads(ContextualFormatter().format(_record("Parameter updated", key="level1Rate")))
    finally:
        LoggingConfig.clear_context()

    assert output["message"] == "Parameter updated"
    assert output["request_id"] == "req-1"
    assert output["caller"] == "0xabc"
    assert output["key"] == "level1Rate"
