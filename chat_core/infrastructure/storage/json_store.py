import os
from pathlib import Path
from typing import Any, Dict, List, Sequence
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageCache
from chat_core.domain.models import Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.codec import deserialize_messages, serialize_messages
from chat_core.infrastructure.storage.memory_store import InMemoryMessageCache


class JsonMessageCache(MessageCache):
    """基于 JSON 文件的本地缓存槽位，每个 cache_key 对应一个文件。"""

    def __init__(self, root: str | Path | None = None, cache_key: str | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._cache_root = self._root / "cache"
        self._cache_key = cache_key or settings.cache_key
        self._path = self._cache_root / f"{self._cache_key}.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> List[Message]:
        if not self._path.exists():
            return []
        try:
            return deserialize_messages(self._path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.warning(
                "Failed to load message cache, treating as empty",
                extra={"extra": self._log_ctx(error=str(e))},
            )
            return []

    def save(self, messages: Sequence[Message]) -> None:
        tmp_path = self._cache_root / f"{self._cache_key}.{uuid4().hex}.json.tmp"
        try:
            self._cache_root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(serialize_messages(messages), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except Exception as e:
            logger.warning(
                "Failed to save message cache",
                extra={"extra": self._log_ctx(error=str(e), count=len(messages))},
            )
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass

    def clear(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except Exception as e:
            logger.warning("Failed to clear message cache", extra={"extra": self._log_ctx(error=str(e))})

    def _log_ctx(self, **fields: Any) -> Dict[str, Any]:
        return {"cache_key": self._cache_key, "path": str(self._path), **fields}


def create_cache(cache_key: str | None = None, cfg=settings) -> MessageCache:
    """根据配置创建缓存：默认写本地 JSON 文件，关闭本地缓存时退化为内存槽位。"""

    key = cache_key or getattr(cfg, "cache_key", "chat_messages_cache")
    if getattr(cfg, "enable_local_cache", True):
        return JsonMessageCache(root=getattr(cfg, "storage_root", ".storage"), cache_key=key)
    return InMemoryMessageCache(cache_key=key)
