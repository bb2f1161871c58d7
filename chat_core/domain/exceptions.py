"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于 SessionStore 统一分类（瞬时 / 永久）并写入会话级错误槽位。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "CACHE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 endpoint、attempt 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时、读流中断等。属于瞬时故障。"""


class ApiError(BusinessError):
    """服务端返回非 2xx（429 除外）时抛出；是否重试由 http_status 决定。"""


class RateLimitError(BusinessError):
    """服务端限流（HTTP 429），由 BackoffController 负责退避重试。"""


class ValidationError(BusinessError):
    """参数、配置或状态校验失败。"""


class ExchangeCancelled(Exception):
    """交换被主动取消时用于展开调用栈的内部信号，不属于业务错误，也不会暴露给调用方。"""
