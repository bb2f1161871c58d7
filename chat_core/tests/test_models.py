from datetime import datetime, timezone

import pytest

from chat_core.domain.models import Message, SessionState, parse_timestamp


def test_models_exist():
    state = SessionState()
    assert state.messages == [] and state.error is None and state.retry_count == 0
    msg = Message(id="m1", role="user", content="x")
    assert msg.created_at.tzinfo is not None
    assert msg.is_streaming is False


def test_message_wire_format():
    ts = datetime(2025, 12, 29, 4, 25, 51, tzinfo=timezone.utc)
    msg = Message(id="m1", role="assistant", content="hi", created_at=ts, is_streaming=True)
    data = msg.to_dict()
    assert data == {"id": "m1", "role": "assistant", "content": "hi", "createdAt": "2025-12-29T04:25:51Z", "isStreaming": True}
    assert Message.from_dict(data) == msg


def test_message_from_dict_rejects_unknown_role():
    with pytest.raises(ValueError):
        Message.from_dict({"id": "m1", "role": "tool", "content": "", "createdAt": "2025-12-29T04:25:51Z"})


def test_parse_timestamp_accepts_epoch_millis_and_naive_strings():
    assert parse_timestamp(1767000000000).tzinfo is not None
    assert parse_timestamp("2025-12-29 04:25:51") == datetime(2025, 12, 29, 4, 25, 51, tzinfo=timezone.utc)
