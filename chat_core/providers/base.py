"""流式传输抽象接口。

SessionStore 不直接依赖具体的 HTTP 客户端，而是依赖此协议：

- 每种端点实现一个 StreamTransport（如 HttpStreamTransport）。
- 负责：把 GenerationRequest 转成具体请求，把响应体以原始分块的形式逐块产出，
  并把状态码 / 网络错误映射为 domain.exceptions 中的异常。

帧解析不属于传输层，由 streaming.decoder 统一完成。
"""

from typing import AsyncIterator, Protocol, Union

from chat_core.domain.models import GenerationRequest


class StreamTransport(Protocol):
    """流式生成端点的客户端协议。

    实现者需要提供：
    - name: 端点名称，用于日志。
    - include_history: 是否需要 SessionStore 在请求中附带历史消息。
    - stream(req): 发起一次请求并逐块产出响应体；
      429 抛 RateLimitError，其他非 2xx 抛 ApiError，网络故障抛 NetworkError。
    """

    name: str
    include_history: bool

    def stream(self, req: GenerationRequest) -> AsyncIterator[Union[bytes, str]]:
        ...
