"""会话核心数据模型。

本模块定义了 SessionStore、缓存与传输层之间共享的标准数据结构：

- Message: 一条对话消息（user/assistant），流式结束后不可变。
- SessionState: 会话的完整可观察状态，UI 层是唯一消费者。
- SessionError: 会话级错误槽位中的错误记录。
- RetryContext: 单次交换内的重试上下文，交换结束即丢弃。
- GenerationRequest: 发给流式生成端点的请求。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4


# 消息角色类型；远端存储中的 "model" 角色在入库时会被归一为 "assistant"
Role = Literal["user", "assistant"]


def new_message_id() -> str:
    return f"msg-{uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """解析 ISO-8601 字符串或毫秒时间戳，统一返回带时区的 UTC 时间。"""

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00").replace(" ", "T"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Message:
    """一条对话消息。

    - id: 会话内唯一标识；本地生成，远端持久化后由服务端返回的标识覆盖。
    - role: 消息角色。
    - content: 纯文本内容；流式期间只会被追加，不会被替换。
    - created_at: 创建时间（UTC），编辑时刷新。
    - is_streaming: 是否仍在接收增量。
    """

    id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=utcnow)
    is_streaming: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": format_timestamp(self.created_at),
            "isStreaming": self.is_streaming,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        role = data["role"]
        if role not in ("user", "assistant"):
            raise ValueError(f"unsupported role: {role!r}")
        return cls(
            id=str(data["id"]),
            role=role,
            content=str(data.get("content") or ""),
            created_at=parse_timestamp(data["createdAt"]),
            is_streaming=bool(data.get("isStreaming", False)),
        )


@dataclass(frozen=True)
class SessionError:
    """会话级错误记录（单槽位）。"""

    code: str
    message: str
    http_status: Optional[int] = None


@dataclass
class SessionState:
    """会话可观察状态。

    不变式：is_streaming 为 True 当且仅当恰有一条消息 is_streaming=True，
    且该消息位于 messages 末尾。
    """

    messages: List[Message] = field(default_factory=list)
    is_loading: bool = False
    is_streaming: bool = False
    error: Optional[SessionError] = None
    retry_count: int = 0


@dataclass
class RetryContext:
    """单次交换的重试上下文。attempt 从 0 开始计数。"""

    attempt: int
    max_retries: int
    base_delay_ms: int


@dataclass
class GenerationRequest:
    """一次流式生成请求。

    history 只在端点以上下文模式运行时填充，按时间顺序排列，不含本次 content。
    """

    content: str
    history: List[Message] = field(default_factory=list)
