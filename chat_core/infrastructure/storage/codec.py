"""缓存载荷的序列化格式：Message.to_dict() 组成的 JSON 数组。"""

import json
from typing import List, Sequence

from chat_core.domain.models import Message


def serialize_messages(messages: Sequence[Message]) -> str:
    return json.dumps([m.to_dict() for m in messages], ensure_ascii=False)


def deserialize_messages(raw: str) -> List[Message]:
    """解析缓存载荷；结构不合法时抛出 ValueError，由调用方按"缺失"处理。"""

    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("cache payload is not a list")
    items: List[Message] = []
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("cache entry is not an object")
        try:
            msg = Message.from_dict(entry)
        except (KeyError, TypeError) as e:
            raise ValueError(f"invalid cache entry: {e}") from e
        # 上次进程在流式过程中退出，残留的占位消息视为已结束
        if msg.is_streaming:
            msg = Message(id=msg.id, role=msg.role, content=msg.content, created_at=msg.created_at)
        items.append(msg)
    return items
