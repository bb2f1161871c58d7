from typing import List, Protocol, Sequence

from .models import Message


class MessageCache(Protocol):
    """本地缓存槽位。

    实现必须是尽力而为的：load 在槽位缺失或损坏时返回空列表，
    save / clear 失败只记录日志，绝不向调用方抛出异常。
    """

    def load(self) -> List[Message]:
        ...

    def save(self, messages: Sequence[Message]) -> None:
        ...

    def clear(self) -> None:
        ...


class RemoteMessageSink(Protocol):
    """远端消息存储。persist 返回服务端确认后的权威记录（id / created_at）。"""

    async def persist(self, message: Message) -> Message:
        ...
