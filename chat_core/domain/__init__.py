"""领域层模型与协议。

包含：
- models: Message / SessionState / RetryContext 等会话模型。
- conversation: 本地缓存与远端消息存储的抽象协议。
- exceptions: 业务异常类型定义。
"""
