"""进程内缓存槽位，主要用于测试与关闭本地持久化的场景。

与 JsonMessageCache 一样保存序列化后的载荷，而不是对象引用，
因此 load() 得到的是与写入时相互独立的副本。
"""

from typing import Dict, List, Optional, Sequence

from chat_core.domain.conversation import MessageCache
from chat_core.domain.models import Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.codec import deserialize_messages, serialize_messages


class InMemoryMessageCache(MessageCache):
    def __init__(self, cache_key: str = "chat_messages_cache", slots: Optional[Dict[str, str]] = None):
        self.cache_key = cache_key
        self.slots: Dict[str, str] = slots if slots is not None else {}
        self.save_count = 0

    def load(self) -> List[Message]:
        raw = self.slots.get(self.cache_key)
        if raw is None:
            return []
        try:
            return deserialize_messages(raw)
        except ValueError as e:
            logger.warning(
                "Failed to load message cache, treating as empty",
                extra={"extra": {"cache_key": self.cache_key, "error": str(e)}},
            )
            return []

    def save(self, messages: Sequence[Message]) -> None:
        self.slots[self.cache_key] = serialize_messages(messages)
        self.save_count += 1

    def clear(self) -> None:
        self.slots.pop(self.cache_key, None)
