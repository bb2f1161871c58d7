"""流式端点配置。

本模块将"逻辑端点名"与"具体请求路径/模式"解耦：

- 逻辑名（name）：在代码与配置里使用的统一名称，例如 "chat"。
- path：相对 base_url 的实际路径。
- include_history：上下文模式下请求体会携带之前的对话消息。

上层只关心逻辑名，具体用哪个路径、哪种模式由这里集中配置。"""

from dataclasses import dataclass
from typing import Mapping


@dataclass
class EndpointConfig:
    """单个流式端点的配置。"""

    name: str
    path: str
    include_history: bool = False


CHAT_ENDPOINT = EndpointConfig(name="chat", path="/api/chat")

# 上下文模式：服务端不保存历史，由客户端在每次请求中携带
CHAT_CONTEXT_ENDPOINT = EndpointConfig(name="chat-context", path="/api/chat", include_history=True)


ENDPOINT_REGISTRY: Mapping[str, EndpointConfig] = {
    "chat": CHAT_ENDPOINT,
    "chat-context": CHAT_CONTEXT_ENDPOINT,
}


def get_endpoint_config(name: str) -> EndpointConfig:
    """根据名称获取 EndpointConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in ENDPOINT_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown endpoint: {name!r}")
