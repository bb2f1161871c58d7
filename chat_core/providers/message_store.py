"""消息存储服务客户端。

对应服务端接口（均位于 {base_url}/api 下）：

- POST /session/connect      {user_id}                          -> {session_id}
- POST /session/disconnect   {session_id}
- GET  /messages?session_id=                                    -> {messages: [...]}
- POST /messages             {session_id, user_id, content, role} -> {message_id, created_at}

所有响应都形如 {"success": bool, ...}，失败时带 "error" 字段。
服务端返回的标识与时间戳是权威值，会覆盖本地生成的占位值。
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, BusinessError, NetworkError, RateLimitError
from chat_core.domain.models import Message, parse_timestamp
from chat_core.infrastructure.logging.logger import logger


def normalize_role(role: str) -> Optional[str]:
    """服务端可能使用 "model" 表示助手消息；system 等其他角色不进入会话。"""

    if role in ("assistant", "model"):
        return "assistant"
    if role == "user":
        return "user"
    return None


def _required(data: Dict[str, Any], key: str, operation: str) -> str:
    value = data.get(key)
    if value is None or value == "":
        raise ApiError(code="API_ERROR", message=f"{operation} response missing {key}", http_status=502)
    return str(value)


def _timestamp(data: Dict[str, Any], operation: str) -> datetime:
    value = data.get("created_at")
    if value is None:
        raise ApiError(code="API_ERROR", message=f"{operation} response missing created_at", http_status=502)
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise ApiError(
            code="API_ERROR",
            message=f"{operation} response has invalid created_at: {value!r}",
            http_status=502,
        ) from e


class MessageStoreClient:
    """消息存储服务的异步 HTTP 客户端。"""

    def __init__(self, cfg=settings, http_transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = cfg
        self._http_transport = http_transport

    @property
    def api_root(self) -> str:
        base = (getattr(self._settings, "base_url", None) or "").rstrip("/")
        return f"{base}/api"

    async def connect(self, user_id: Optional[str] = None) -> str:
        uid = user_id or getattr(self._settings, "user_id", None)
        data = await self._request("POST", "/session/connect", json={"user_id": uid})
        session_id = data.get("session_id")
        if not session_id:
            raise ApiError(code="API_ERROR", message="connect response missing session_id", http_status=502)
        logger.info("Message store session connected", extra={"extra": {"session_id": session_id}})
        return str(session_id)

    async def disconnect(self, session_id: str) -> None:
        await self._request("POST", "/session/disconnect", json={"session_id": session_id})
        logger.info("Message store session disconnected", extra={"extra": {"session_id": session_id}})

    async def list_messages(self, session_id: str) -> List[Message]:
        data = await self._request("GET", "/messages", params={"session_id": session_id})
        items: List[Message] = []
        for row in data.get("messages") or []:
            role = normalize_role(str(row.get("role") or ""))
            if role is None:
                continue
            items.append(
                Message(
                    id=_required(row, "id", "list_messages"),
                    role=role,
                    content=row.get("content") or row.get("text") or "",
                    created_at=_timestamp(row, "list_messages"),
                )
            )
        return items

    async def add_message(self, session_id: str, role: str, content: str, user_id: Optional[str] = None) -> Message:
        data = await self._request(
            "POST",
            "/messages",
            json={
                "session_id": session_id,
                "user_id": user_id or getattr(self._settings, "user_id", None),
                "content": content,
                "role": role,
            },
        )
        return Message(
            id=_required(data, "message_id", "add_message"),
            role=normalize_role(str(data.get("role") or role)) or "user",
            content=data.get("content") or content,
            created_at=_timestamp(data, "add_message"),
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                trust_env=False,
                transport=self._http_transport,
            ) as client:
                resp = await client.request(method, f"{self.api_root}{path}", **kwargs)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__) from e
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Message store rate limit", http_status=429)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if resp.status_code == 404:
            raise BusinessError(
                code="SESSION_NOT_FOUND",
                message=data.get("error") or "Session not found",
                http_status=404,
            )
        if resp.status_code >= 400 or data.get("success") is False:
            raise ApiError(
                code="API_ERROR",
                message=data.get("error") or resp.text,
                http_status=resp.status_code,
            )
        return data


class RemoteSessionSink:
    """把 MessageStoreClient 适配为 SessionStore 使用的 RemoteMessageSink。"""

    def __init__(self, client: MessageStoreClient, session_id: str, user_id: Optional[str] = None):
        self._client = client
        self.session_id = session_id
        self._user_id = user_id

    async def persist(self, message: Message) -> Message:
        return await self._client.add_message(self.session_id, message.role, message.content, user_id=self._user_id)
