"""流式端点与消息存储集成层。

该包下的模块负责：
- 定义流式传输抽象接口 (base)。
- 维护端点名称与路径/模式的配置 (registry)。
- 提供基于 httpx 的具体实现 (http_transport、message_store)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.providers.base import StreamTransport
from chat_core.providers.http_transport import HttpStreamTransport
from chat_core.providers.registry import get_endpoint_config


def create_transport(name: Optional[str] = None) -> StreamTransport:
    """根据端点名称创建传输实例，默认取配置中的 default_endpoint。"""

    endpoint_name = name or getattr(settings, "default_endpoint", "chat")
    return HttpStreamTransport(settings, endpoint=get_endpoint_config(endpoint_name))
