import json
import logging

from career_relay.infrastructure.logging.logger import JsonLineFormatter


def _record(msg, **fields):
    record = logging.LogRecord("career_relay", logging.INFO, __file__, 1, msg, None, None)
    if fields:
        record.extra = fields
    return record


def test_formatter_merges_structured_fields():
    line = JsonLineFormatter().format(_record("relay.completed", provider="openai", chunks=3))
    payload = json.loads(line)
    assert payload["msg"] == "relay.completed"
    assert payload["level"] == "INFO"
    assert payload["provider"] == "openai"
    assert payload["chunks"] == 3
    assert payload["ts"].endswith("Z")


def test_formatter_redacts_long_messages():
    payload = json.loads(JsonLineFormatter(redact_content=True).format(_record("简" * 100)))
    assert payload["msg"] == "简" * 64
