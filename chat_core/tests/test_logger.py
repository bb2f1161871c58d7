import json
import logging

from chat_core.infrastructure.logging import logger as logger_module


class RedactingSettings:
    log_redact_content = True


class PlainSettings:
    log_redact_content = False


def _record(msg, extra):
    record = logging.LogRecord("chat_core", logging.WARNING, __file__, 1, msg, None, None)
    record.extra = extra
    return record


def test_redaction_covers_frame_preview(monkeypatch):
    monkeypatch.setattr(logger_module, "settings", RedactingSettings())
    record = _record("Dropped malformed stream frame: " + "x" * 100, {"frame_preview": "data: secret text", "code": "X"})

    payload = json.loads(logger_module.JsonFormatter().format(record))

    assert len(payload["msg"]) == 64
    assert payload["frame_preview"] == "<redacted 17 chars>"
    assert payload["code"] == "X"


def test_fields_written_verbatim_without_redaction(monkeypatch):
    monkeypatch.setattr(logger_module, "settings", PlainSettings())
    record = _record("hello", {"frame_preview": "data: secret text"})

    payload = json.loads(logger_module.JsonFormatter().format(record))

    assert payload["msg"] == "hello"
    assert payload["frame_preview"] == "data: secret text"
