"""远端消息轮询。

独立于流式路径：定期拉取消息存储服务中的完整消息列表，
把尚未见过的助手消息交给 SessionStore.ingest，与流式交换共享同一个追加入口。
"""

from typing import Optional, Set

from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError, ExchangeCancelled
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.message_store import MessageStoreClient
from chat_core.session.store import SessionStore
from chat_core.streaming.cancellation import CancellationToken


class MessagePoller:
    def __init__(
        self,
        client: MessageStoreClient,
        session_id: str,
        store: SessionStore,
        interval: Optional[float] = None,
        cfg=settings,
    ):
        self._client = client
        self._session_id = session_id
        self._store = store
        self._interval = interval if interval is not None else cfg.poll_interval
        self._seen: Set[str] = {m.id for m in store.messages}
        self._token: Optional[CancellationToken] = None

    async def poll_once(self) -> int:
        """拉取一次，返回新写入会话的消息数。"""

        added = 0
        remote = await self._client.list_messages(self._session_id)
        # 只记住服务端仍在返回的标识
        self._seen &= {m.id for m in remote}
        for message in remote:
            if message.role != "assistant" or message.id in self._seen:
                continue
            self._seen.add(message.id)
            if self._store.ingest(message):
                added += 1
        if added:
            logger.info(
                "Poller ingested remote messages",
                extra={"extra": {"session_id": self._session_id, "count": added}},
            )
        return added

    async def run(self, token: Optional[CancellationToken] = None) -> None:
        """循环轮询直到 token 被取消；单次轮询失败只记录日志。"""

        self._token = token or CancellationToken()
        try:
            while not self._token.cancelled:
                try:
                    await self.poll_once()
                except BusinessError as e:
                    logger.warning(
                        f"Message poll failed: {e.message}",
                        extra={"extra": {"session_id": self._session_id, "code": e.code}},
                    )
                await self._token.sleep(self._interval)
        except ExchangeCancelled:
            return

    def stop(self) -> None:
        if self._token is not None:
            self._token.cancel()
