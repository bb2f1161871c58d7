"""指数退避控制器。

状态机::

    IDLE -> ATTEMPTING -> SUCCEEDED | WAITING_TO_RETRY | FAILED
    WAITING_TO_RETRY -> ATTEMPTING

SUCCEEDED 与 FAILED 是终态。第 n 次（从 0 计）失败后的等待时间为
``b * 2^n`` 加上 ``[0, 0.1 * b * 2^n)`` 的随机抖动。
"""

import random
from enum import Enum
from typing import Collection, Optional

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from chat_core.domain.models import RetryContext

JITTER_RATIO = 0.1
DEFAULT_RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

RETRIES_EXHAUSTED = "retries exhausted"
PERMANENT_FAILURE = "permanent failure"


class BackoffState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    WAITING_TO_RETRY = "waiting_to_retry"
    FAILED = "failed"


def compute_backoff_delay(attempt: int, base_delay_ms: float, rng: Optional[random.Random] = None) -> float:
    """返回第 attempt 次失败后的等待毫秒数，落在 [b*2^n, 1.1*b*2^n) 内。"""

    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    exponential = base_delay_ms * (2 ** attempt)
    jitter = (rng or random).random() * exponential * JITTER_RATIO
    return exponential + jitter


def is_transient(exc: BaseException, retry_status_codes: Collection[int] = DEFAULT_RETRY_STATUS_CODES) -> bool:
    if isinstance(exc, (RateLimitError, NetworkError)):
        return True
    if isinstance(exc, ApiError):
        return exc.http_status in retry_status_codes
    return False


class BackoffController:
    """单次交换的重试调度器，持有该交换的 RetryContext。"""

    def __init__(
        self,
        max_retries: int,
        base_delay_ms: int,
        retry_status_codes: Collection[int] = DEFAULT_RETRY_STATUS_CODES,
        rng: Optional[random.Random] = None,
    ):
        if max_retries < 0:
            raise ValidationError(code="INVALID_RETRY_POLICY", message="max_retries must be >= 0")
        self.context = RetryContext(attempt=0, max_retries=max_retries, base_delay_ms=base_delay_ms)
        self.state = BackoffState.IDLE
        self.failure_reason: Optional[str] = None
        self._retry_status_codes = frozenset(retry_status_codes)
        self._rng = rng

    @property
    def retries_used(self) -> int:
        return self.context.attempt

    def begin_attempt(self) -> int:
        """进入 ATTEMPTING，返回当前尝试序号（从 0 计）。"""

        if self.state not in (BackoffState.IDLE, BackoffState.WAITING_TO_RETRY):
            raise ValidationError(
                code="INVALID_BACKOFF_TRANSITION",
                message=f"cannot start an attempt from state {self.state.value}",
            )
        self.state = BackoffState.ATTEMPTING
        return self.context.attempt

    def record_success(self) -> None:
        self._require_attempting()
        self.state = BackoffState.SUCCEEDED

    def record_failure(self, exc: BaseException) -> Optional[float]:
        """登记一次失败。

        Returns:
            需要等待的毫秒数（进入 WAITING_TO_RETRY），
            或 None（进入 FAILED，原因见 failure_reason）。
        """

        self._require_attempting()
        if not is_transient(exc, self._retry_status_codes):
            self.state = BackoffState.FAILED
            self.failure_reason = PERMANENT_FAILURE
            return None
        if self.context.attempt >= self.context.max_retries:
            self.state = BackoffState.FAILED
            self.failure_reason = RETRIES_EXHAUSTED
            return None
        delay = compute_backoff_delay(self.context.attempt, self.context.base_delay_ms, self._rng)
        self.context.attempt += 1
        self.state = BackoffState.WAITING_TO_RETRY
        return delay

    def _require_attempting(self) -> None:
        if self.state is not BackoffState.ATTEMPTING:
            raise ValidationError(
                code="INVALID_BACKOFF_TRANSITION",
                message=f"no attempt in progress (state {self.state.value})",
            )
