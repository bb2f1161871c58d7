import asyncio

import pytest

from chat_core.domain.exceptions import ExchangeCancelled
from chat_core.streaming.cancellation import CancellationToken


def test_cancel_is_idempotent():
    token = CancellationToken()
    assert not token.cancelled
    token.raise_if_cancelled()
    token.cancel()
    token.cancel()
    assert token.cancelled
    with pytest.raises(ExchangeCancelled):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_sleep_completes_without_cancel():
    token = CancellationToken()
    await token.sleep(0.01)
    assert not token.cancelled


@pytest.mark.asyncio
async def test_sleep_is_interrupted_by_cancel():
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, token.cancel)
    started = loop.time()
    with pytest.raises(ExchangeCancelled):
        await token.sleep(30)
    assert loop.time() - started < 5


@pytest.mark.asyncio
async def test_sleep_after_cancel_raises_immediately():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(ExchangeCancelled):
        await token.sleep(30)
