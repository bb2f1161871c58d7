import json
import logging
import os
from datetime import datetime, timezone

from chat_core.domain.models import Message
from chat_core.infrastructure.storage.json_store import JsonMessageCache, create_cache
from chat_core.infrastructure.storage.memory_store import InMemoryMessageCache


def _messages():
    ts = datetime(2025, 12, 29, 4, 25, 51, tzinfo=timezone.utc)
    return [
        Message(id="m1", role="user", content="hello", created_at=ts),
        Message(id="m2", role="assistant", content="Hi there!", created_at=ts),
    ]


def test_json_cache_round_trip(tmp_path):
    cache = JsonMessageCache(root=tmp_path / ".storage", cache_key="conv-a")
    assert cache.load() == []
    cache.save(_messages())
    assert cache.load() == _messages()
    assert cache.path.exists()
    raw = json.loads(cache.path.read_text(encoding="utf-8"))
    assert raw[0]["createdAt"] == "2025-12-29T04:25:51Z"
    assert raw[1]["isStreaming"] is False


def test_json_cache_keys_are_independent(tmp_path):
    a = JsonMessageCache(root=tmp_path, cache_key="a")
    b = JsonMessageCache(root=tmp_path, cache_key="b")
    a.save(_messages())
    assert b.load() == []
    b.save(_messages()[:1])
    assert len(a.load()) == 2


def test_json_cache_corrupt_slot_is_empty(tmp_path, caplog):
    cache = JsonMessageCache(root=tmp_path, cache_key="conv")
    cache.path.parent.mkdir(parents=True, exist_ok=True)
    cache.path.write_text("{not json", encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="chat_core"):
        assert cache.load() == []
    assert any("Failed to load message cache" in r.getMessage() for r in caplog.records)

    cache.path.write_text(json.dumps([{"id": "x", "role": "robot", "content": "?"}]), encoding="utf-8")
    assert cache.load() == []


def test_json_cache_normalizes_streaming_flag(tmp_path):
    cache = JsonMessageCache(root=tmp_path, cache_key="conv")
    streaming = Message(id="m3", role="assistant", content="partial", is_streaming=True)
    cache.save([streaming])
    loaded = cache.load()
    assert loaded[0].content == "partial"
    assert loaded[0].is_streaming is False


def test_json_cache_save_failure_is_logged(tmp_path, monkeypatch, caplog):
    cache = JsonMessageCache(root=tmp_path, cache_key="conv")
    cache.save(_messages())

    def boom(*args, **kwargs):
        raise OSError("quota exceeded")

    monkeypatch.setattr(os, "replace", boom)
    with caplog.at_level(logging.WARNING, logger="chat_core"):
        cache.save(_messages()[:1])
    assert any("Failed to save message cache" in r.getMessage() for r in caplog.records)
    monkeypatch.undo()
    assert len(cache.load()) == 2
    assert list(cache.path.parent.glob("*.tmp")) == []


def test_json_cache_clear(tmp_path):
    cache = JsonMessageCache(root=tmp_path, cache_key="conv")
    cache.clear()
    cache.save(_messages())
    cache.clear()
    assert not cache.path.exists()
    assert cache.load() == []


def test_memory_cache_round_trip_and_corruption():
    slots = {}
    cache = InMemoryMessageCache(cache_key="k", slots=slots)
    cache.save(_messages())
    assert cache.load() == _messages()
    assert cache.save_count == 1
    slots["k"] = "]["
    assert cache.load() == []
    cache.clear()
    assert "k" not in slots


def test_create_cache_respects_settings(tmp_path):
    class DummySettings:
        enable_local_cache = True
        storage_root = str(tmp_path)
        cache_key = "default"

    assert isinstance(create_cache(cfg=DummySettings()), JsonMessageCache)
    DummySettings.enable_local_cache = False
    cache = create_cache("other", cfg=DummySettings())
    assert isinstance(cache, InMemoryMessageCache)
    assert cache.cache_key == "other"
