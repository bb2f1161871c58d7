"""Chat Core 顶层包。

该包提供客户端流式会话管理的核心实现，
包括配置加载、领域模型、流式解码、退避重试、取消信号、
本地缓存同步、消息存储服务客户端与会话编排等能力。
"""

from chat_core.session import MessagePoller, SessionStore

__all__ = ["MessagePoller", "SessionStore"]
