"""流式交换的基础原语。

- decoder: 把任意切分的响应分块解码为内容片段。
- backoff: 重试资格判断与指数退避延迟计算。
- cancellation: 交换级、幂等的取消信号。
"""

from chat_core.streaming.backoff import BackoffController, BackoffState, compute_backoff_delay
from chat_core.streaming.cancellation import CancellationToken
from chat_core.streaming.decoder import StreamDecoder, decode_stream

__all__ = [
    "BackoffController",
    "BackoffState",
    "CancellationToken",
    "StreamDecoder",
    "compute_backoff_delay",
    "decode_stream",
]
