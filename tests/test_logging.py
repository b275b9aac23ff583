"""
Tests for dripline/utils/logging.py - JSON formatter and header sanitizing.
"""
import json
import logging

from dripline.utils.logging import (
    StructuredJsonFormatter,
    generate_correlation_id,
    sanitize_headers,
    set_correlation_id,
)


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("dripline.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJsonFormatter:
    def test_single_json_line_with_correlation_id(self):
        set_correlation_id("cid-42")
        line = StructuredJsonFormatter().format(_record())
        entry = json.loads(line)
        assert entry["correlation_id"] == "cid-42"
        assert entry["level"] == "INFO"
        assert entry["module"] == "dripline.test"
        assert entry["message"] == "hello"

    def test_context_keys_copied(self):
        entry = json.loads(StructuredJsonFormatter().format(
            _record(tenant_id="t-1", delivery_id="d-1", unrelated="x"),
        ))
        assert entry["tenant_id"] == "t-1"
        assert entry["delivery_id"] == "d-1"
        assert "unrelated" not in entry


class TestSanitizeHeaders:
    def test_signature_and_auth_dropped(self):
        result = sanitize_headers({
            "X-Webhook-Signature": "secret",
            "Authorization": "Bearer x",
            "X-Webhook-Timestamp": "1700000000",
            "Content-Type": "application/json",
        })
        assert result == {"X-Webhook-Timestamp": "1700000000", "Content-Type": "application/json"}

    def test_multi_valued_collapsed(self):
        assert sanitize_headers({"Accept": ["a", "b"]}) == {"Accept": "[2 values]"}


def test_generated_correlation_ids_are_unique_hex():
    first, second = generate_correlation_id(), generate_correlation_id()
    assert first != second
    assert len(first) == 32
    int(first, 16)
