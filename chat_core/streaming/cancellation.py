"""交换级取消信号。

每次交换创建一个新的 CancellationToken，并按引用传给该交换经过的每个挂起点
（网络请求、每次读流、每次退避等待）。挂起点恢复后立即检查标志。
"""

import asyncio

from chat_core.domain.exceptions import ExchangeCancelled


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """设置取消标志；重复调用或在交换结束后调用都是无操作。"""

        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExchangeCancelled()

    async def sleep(self, seconds: float) -> None:
        """等待 seconds 秒或取消信号（先到者为准），随后检查标志。"""

        if seconds > 0 and not self._event.is_set():
            try:
                await asyncio.wait_for(self._event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        self.raise_if_cancelled()
