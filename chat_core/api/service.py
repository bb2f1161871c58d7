"""对外 API 服务模块。

提供简化的函数接口供上层应用（UI、脚本）调用。
"""

from typing import Any, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.models import Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import create_cache
from chat_core.providers import create_transport
from chat_core.session.store import SessionStore


_session: Optional[SessionStore] = None


def get_default_session() -> SessionStore:
    """获取默认的会话实例（单例），从配置的缓存槽位恢复历史。"""
    global _session
    if _session is None:
        _session = SessionStore(
            transport=create_transport(settings.default_endpoint),
            cache=create_cache(settings.cache_key),
        )
    return _session


async def reset_default_session() -> None:
    """取消进行中的交换并丢弃单例（缓存槽位保留）。"""
    global _session
    if _session is not None:
        await _session.aclose()
    _session = None


def _message_view(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "created_at": message.created_at.isoformat(),
        "is_streaming": message.is_streaming,
    }


async def run_chat(content: str) -> Dict[str, Any]:
    """发送一条消息并等待交换结束。

    Args:
        content: 用户输入内容

    Returns:
        包含助手消息、错误信息和当前消息数的字典；
        助手消息在取消、失败或空白输入时为 None。
    """
    session = get_default_session()
    try:
        reply = await session.send_message(content)
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {"error": str(e)}})
        raise
    state = session.state
    return {
        "assistant_message": _message_view(reply) if reply else None,
        "error": (
            {"code": state.error.code, "message": state.error.message, "http_status": state.error.http_status}
            if state.error
            else None
        ),
        "message_count": len(state.messages),
    }


def get_messages() -> List[Dict[str, Any]]:
    """获取默认会话的所有消息。"""
    return [_message_view(m) for m in get_default_session().messages]
