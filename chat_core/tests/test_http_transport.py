import json

import httpx
import pytest

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from chat_core.domain.models import GenerationRequest, Message
from chat_core.infrastructure.storage.memory_store import InMemoryMessageCache
from chat_core.providers.http_transport import HttpStreamTransport
from chat_core.providers.registry import CHAT_CONTEXT_ENDPOINT
from chat_core.session.store import SessionStore


class SettingsStub:
    base_url = "http://chat.test"
    http_timeout = 1.0


async def _collect(transport, req):
    return [chunk async for chunk in transport.stream(req)]


@pytest.mark.asyncio
async def test_stream_posts_message_and_yields_body():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        captured["accept"] = request.headers.get("accept")
        return httpx.Response(200, content=b'data: {"content":"OK"}\n')

    transport = HttpStreamTransport(SettingsStub(), http_transport=httpx.MockTransport(handler))
    chunks = await _collect(transport, GenerationRequest(content="hello"))

    assert b"".join(chunks) == b'data: {"content":"OK"}\n'
    assert captured["url"] == "http://chat.test/api/chat"
    assert captured["body"] == {"message": "hello"}
    assert captured["accept"] == "text/event-stream"


@pytest.mark.asyncio
async def test_context_endpoint_includes_history():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"")

    transport = HttpStreamTransport(
        SettingsStub(), endpoint=CHAT_CONTEXT_ENDPOINT, http_transport=httpx.MockTransport(handler)
    )
    history = [Message(id="m1", role="user", content="before"), Message(id="m2", role="assistant", content="reply")]
    await _collect(transport, GenerationRequest(content="now", history=history))

    assert transport.include_history is True
    assert captured["body"]["messages"] == [
        {"role": "user", "content": "before"},
        {"role": "assistant", "content": "reply"},
    ]


@pytest.mark.asyncio
async def test_status_codes_map_to_exceptions():
    statuses = iter([429, 500, 404])

    def handler(request):
        return httpx.Response(next(statuses), text="nope")

    transport = HttpStreamTransport(SettingsStub(), http_transport=httpx.MockTransport(handler))
    req = GenerationRequest(content="hi")

    with pytest.raises(RateLimitError):
        await _collect(transport, req)
    with pytest.raises(ApiError) as exc:
        await _collect(transport, req)
    assert exc.value.http_status == 500
    with pytest.raises(ApiError) as exc:
        await _collect(transport, req)
    assert exc.value.http_status == 404
    assert exc.value.extra["body"] == "nope"


@pytest.mark.asyncio
async def test_transport_failure_maps_to_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    transport = HttpStreamTransport(SettingsStub(), http_transport=httpx.MockTransport(handler))
    with pytest.raises(NetworkError):
        await _collect(transport, GenerationRequest(content="hi"))


@pytest.mark.asyncio
async def test_session_store_over_http_retries_rate_limit():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429)
        return httpx.Response(200, content='data: {"content":"Hi"}\ndata: {"content":" there"}\n'.encode())

    transport = HttpStreamTransport(SettingsStub(), http_transport=httpx.MockTransport(handler))
    store = SessionStore(transport, InMemoryMessageCache(), max_retries=2, base_delay_ms=1)

    reply = await store.send_message("hello")

    assert reply.content == "Hi there"
    assert len(calls) == 2
    assert store.state.error is None
