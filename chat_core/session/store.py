"""会话编排器。

SessionStore 持有会话状态，并以"一次只有一个交换"的方式驱动
流式解码、退避重试与取消。并发策略为 cancel-then-replace：
交换进行中再次调用 send_message，会先取消当前交换、等待其展开，再开始新交换。

所有挂起点（网络请求、读流、退避等待、远端持久化）都在同一个 asyncio 任务内，
挂起点恢复后检查取消标志；因此增量片段严格按解码顺序写入状态。
"""

import asyncio
import random
from contextlib import aclosing
from dataclasses import replace
from typing import Callable, Collection, Dict, Any, List, Optional, Sequence
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageCache, RemoteMessageSink
from chat_core.domain.exceptions import BusinessError, ExchangeCancelled, ValidationError
from chat_core.domain.models import (
    GenerationRequest,
    Message,
    Role,
    SessionError,
    SessionState,
    new_message_id,
    utcnow,
)
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import create_cache
from chat_core.providers.base import StreamTransport
from chat_core.streaming.backoff import RETRIES_EXHAUSTED, BackoffController
from chat_core.streaming.cancellation import CancellationToken
from chat_core.streaming.decoder import decode_stream

StateListener = Callable[[SessionState], None]


class _Exchange:
    """一次进行中的交换：一条出站请求及其全部重试。"""

    def __init__(self, content: str, user_message_id: str, assistant_message_id: str, history: List[Message]):
        self.id = f"ex-{uuid4().hex}"
        self.content = content
        self.user_message_id = user_message_id
        self.assistant_message_id = assistant_message_id
        self.history = history
        self.token = CancellationToken()
        self.task: Optional["asyncio.Task[Optional[Message]]"] = None


class SessionStore:
    def __init__(
        self,
        transport: StreamTransport,
        cache: Optional[MessageCache] = None,
        *,
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        retry_status_codes: Optional[Collection[int]] = None,
        max_context_messages: Optional[int] = None,
        remote: Optional[RemoteMessageSink] = None,
        on_change: Optional[StateListener] = None,
        rng: Optional[random.Random] = None,
        cfg=settings,
    ):
        self._transport = transport
        self._cache = cache if cache is not None else create_cache(cfg=cfg)
        self._max_retries = max_retries if max_retries is not None else cfg.max_retries
        self._base_delay_ms = base_delay_ms if base_delay_ms is not None else cfg.initial_backoff_ms
        self._retry_status_codes = frozenset(
            retry_status_codes if retry_status_codes is not None else cfg.retry_status_codes
        )
        self._max_context = max_context_messages or cfg.max_context_messages
        self._remote = remote
        self._on_change = on_change
        self._rng = rng
        self._state = SessionState(messages=self._cache.load())
        self._exchange: Optional[_Exchange] = None

    # ---- 只读视图 ----

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def messages(self) -> List[Message]:
        return list(self._state.messages)

    @property
    def is_active(self) -> bool:
        return self._exchange is not None

    # ---- 交换 ----

    async def send_message(self, content: str) -> Optional[Message]:
        """发送一条用户消息并流式接收助手回复。

        Returns:
            完成的助手消息；内容为空白、被取消或失败时返回 None
            （失败原因见 state.error）。
        """

        if not content or not content.strip():
            return None

        while self._exchange is not None:
            previous = self._exchange
            logger.info(
                "Cancelling active exchange before starting a new one",
                extra={"extra": {"exchange_id": previous.id}},
            )
            self.cancel()
            if previous.task is not None and not previous.task.done():
                await asyncio.wait([previous.task])

        history: List[Message] = []
        if getattr(self._transport, "include_history", False):
            history = [m for m in self._state.messages if m.content][-self._max_context:]

        user_msg = Message(id=new_message_id(), role="user", content=content)
        placeholder = Message(id=new_message_id(), role="assistant", content="", is_streaming=True)
        self._state.error = None
        self._state.retry_count = 0
        self._state.messages.extend([user_msg, placeholder])
        self._state.is_loading = True
        self._state.is_streaming = True
        self._persist()
        self._notify()

        exchange = _Exchange(content, user_msg.id, placeholder.id, history)
        self._exchange = exchange
        exchange.task = asyncio.create_task(self._run_exchange(exchange))
        try:
            await asyncio.wait([exchange.task])
        except asyncio.CancelledError:
            if self._exchange is exchange:
                self.cancel()
            raise
        if exchange.task.cancelled():
            return None
        return exchange.task.result()

    def cancel(self) -> None:
        """取消当前交换（若有）。不会写入错误；重复调用是无操作。"""

        exchange = self._exchange
        if exchange is None:
            return
        exchange.token.cancel()
        if exchange.task is not None and not exchange.task.done():
            exchange.task.cancel()
        self._finish_cancelled(exchange)

    async def aclose(self) -> None:
        """取消当前交换并等待其任务结束。"""

        exchange = self._exchange
        self.cancel()
        if exchange is not None and exchange.task is not None and not exchange.task.done():
            await asyncio.wait([exchange.task])

    async def _run_exchange(self, exchange: _Exchange) -> Optional[Message]:
        log_ctx: Dict[str, Any] = {"exchange_id": exchange.id, "endpoint": getattr(self._transport, "name", None)}
        backoff = BackoffController(
            max_retries=self._max_retries,
            base_delay_ms=self._base_delay_ms,
            retry_status_codes=self._retry_status_codes,
            rng=self._rng,
        )
        try:
            await self._push_remote(exchange, exchange.user_message_id)
            while True:
                attempt = backoff.begin_attempt()
                if attempt > 0:
                    # 重试是同一逻辑交换：复用占位消息，丢弃上一次尝试的残余内容
                    self._replace(exchange.assistant_message_id, content="")
                    self._notify()
                try:
                    await self._stream_attempt(exchange)
                except BusinessError as exc:
                    delay_ms = backoff.record_failure(exc)
                    if delay_ms is None:
                        return self._fail(exchange, exc, backoff)
                    self._state.retry_count = backoff.retries_used
                    self._notify()
                    logger.warning(
                        f"{exc.message}. Retrying in {delay_ms:.0f}ms "
                        f"(attempt {backoff.retries_used}/{self._max_retries})",
                        extra={"extra": {**log_ctx, "code": exc.code, "http_status": exc.http_status}},
                    )
                    await exchange.token.sleep(delay_ms / 1000)
                    continue
                backoff.record_success()
                break

            self._finalize_placeholder(exchange)
            await self._push_remote(exchange, exchange.assistant_message_id)
            message = self._find(exchange.assistant_message_id)
            self._end_exchange(exchange, error=None)
            logger.info(
                "Exchange completed",
                extra={"extra": {**log_ctx, "retries": backoff.retries_used, "chars": len(message.content)}},
            )
            return message
        except ExchangeCancelled:
            self._finish_cancelled(exchange)
            return None
        except asyncio.CancelledError:
            self._finish_cancelled(exchange)
            if not exchange.token.cancelled:
                raise
            return None
        except Exception as exc:
            logger.exception("Exchange failed unexpectedly", extra={"extra": log_ctx})
            self._fail(exchange, exc, None)
            raise

    async def _stream_attempt(self, exchange: _Exchange) -> None:
        request = GenerationRequest(content=exchange.content, history=list(exchange.history))
        async with aclosing(self._transport.stream(request)) as chunks:
            async with aclosing(decode_stream(chunks, exchange.token)) as fragments:
                async for fragment in fragments:
                    exchange.token.raise_if_cancelled()
                    self._append_fragment(exchange, fragment)
        exchange.token.raise_if_cancelled()

    def _append_fragment(self, exchange: _Exchange, fragment: str) -> None:
        current = self._find(exchange.assistant_message_id)
        self._replace(exchange.assistant_message_id, content=current.content + fragment)
        self._notify()

    async def _push_remote(self, exchange: _Exchange, message_id: str) -> None:
        if self._remote is None:
            return
        message = self._find(message_id)
        if not message.content:
            return
        try:
            record = await self._remote.persist(message)
        except BusinessError as e:
            logger.warning(
                "Failed to persist message to remote store",
                extra={"extra": {"exchange_id": exchange.id, "message_id": message_id, "code": e.code}},
            )
            return
        exchange.token.raise_if_cancelled()
        if record.id != message_id and self._find_or_none(record.id) is not None:
            # 等待期间轮询已按服务端标识写入同一条记录，本地副本让位
            self._state.messages = [m for m in self._state.messages if m.id != message_id]
            logger.info(
                "Remote record already ingested, dropping local copy",
                extra={"extra": {"exchange_id": exchange.id, "message_id": message_id, "remote_id": record.id}},
            )
        else:
            # 服务端返回的标识与时间戳是权威值
            self._replace(message_id, id=record.id, created_at=record.created_at)
        if message_id == exchange.user_message_id:
            exchange.user_message_id = record.id
        else:
            exchange.assistant_message_id = record.id
        self._persist()
        self._notify()

    def _finalize_placeholder(self, exchange: _Exchange) -> None:
        placeholder = self._find_or_none(exchange.assistant_message_id)
        if placeholder is not None and placeholder.is_streaming:
            self._replace(placeholder.id, is_streaming=False)
        self._state.is_streaming = False

    def _end_exchange(self, exchange: _Exchange, error: Optional[SessionError]) -> None:
        self._finalize_placeholder(exchange)
        self._state.is_loading = False
        self._state.retry_count = 0
        self._state.error = error
        self._exchange = None
        self._persist()
        self._notify()

    def _finish_cancelled(self, exchange: _Exchange) -> None:
        if self._exchange is not exchange:
            return
        self._end_exchange(exchange, error=self._state.error)
        logger.info("Exchange cancelled", extra={"extra": {"exchange_id": exchange.id}})

    def _fail(
        self,
        exchange: _Exchange,
        exc: BaseException,
        backoff: Optional[BackoffController],
    ) -> None:
        if self._exchange is not exchange:
            return None
        if isinstance(exc, BusinessError):
            if backoff is not None and backoff.failure_reason == RETRIES_EXHAUSTED:
                error = SessionError(
                    code="RETRIES_EXHAUSTED",
                    message=(
                        f"{exc.message}. Maximum retries ({self._max_retries}) exceeded. "
                        "Please try again later."
                    ),
                    http_status=exc.http_status,
                )
            else:
                error = SessionError(code=exc.code, message=exc.message, http_status=exc.http_status)
        else:
            error = SessionError(code="UNEXPECTED_ERROR", message=str(exc) or type(exc).__name__)
        self._end_exchange(exchange, error=error)
        logger.error(
            f"Exchange failed: {error.message}",
            extra={"extra": {"exchange_id": exchange.id, "code": error.code, "http_status": error.http_status}},
        )
        return None

    # ---- 结构性修改 ----

    def add_message(self, role: Role, content: str) -> Message:
        """直接追加一条已完成的消息（不触发交换）。"""

        if role not in ("user", "assistant"):
            raise ValidationError(code="INVALID_ROLE", message=f"unsupported role: {role!r}")
        message = Message(id=new_message_id(), role=role, content=content)
        self._insert(message)
        self._persist()
        self._notify()
        return message

    def ingest(self, message: Message) -> bool:
        """接收外部来源（如轮询）的消息；已存在的 id 会被忽略。"""

        if any(m.id == message.id for m in self._state.messages):
            return False
        if message.is_streaming:
            message = replace(message, is_streaming=False)
        self._insert(message)
        self._persist()
        self._notify()
        return True

    def delete_message(self, message_id: str) -> None:
        idx = self._index_of(message_id)
        self._ensure_not_streaming(self._state.messages[idx])
        del self._state.messages[idx]
        self._persist()
        self._notify()

    def edit_message(self, message_id: str, content: str) -> Message:
        idx = self._index_of(message_id)
        self._ensure_not_streaming(self._state.messages[idx])
        updated = replace(self._state.messages[idx], content=content, created_at=utcnow())
        self._state.messages[idx] = updated
        self._persist()
        self._notify()
        return updated

    def replace_messages(self, messages: Sequence[Message]) -> None:
        """整体替换消息序列；会先取消进行中的交换。"""

        self.cancel()
        self._state.messages = [replace(m, is_streaming=False) if m.is_streaming else m for m in messages]
        self._persist()
        self._notify()

    def clear(self) -> None:
        """清空消息序列与缓存槽位。"""

        self.cancel()
        self._state.messages = []
        self._state.error = None
        self._state.retry_count = 0
        self._cache.clear()
        self._notify()

    def clear_cache(self) -> None:
        """只清除缓存槽位，内存中的会话保持不变。"""

        self._cache.clear()

    # ---- 辅助方法 ----

    def _insert(self, message: Message) -> None:
        # 流式占位消息必须保持在末尾
        if self._state.is_streaming and self._state.messages:
            self._state.messages.insert(len(self._state.messages) - 1, message)
        else:
            self._state.messages.append(message)

    def _index_of(self, message_id: str) -> int:
        for idx, m in enumerate(self._state.messages):
            if m.id == message_id:
                return idx
        raise BusinessError(code="MESSAGE_NOT_FOUND", message=message_id, http_status=404)

    def _find_or_none(self, message_id: str) -> Optional[Message]:
        for m in reversed(self._state.messages):
            if m.id == message_id:
                return m
        return None

    def _find(self, message_id: str) -> Message:
        message = self._find_or_none(message_id)
        if message is None:
            raise BusinessError(code="MESSAGE_NOT_FOUND", message=message_id, http_status=404)
        return message

    def _replace(self, message_id: str, **changes: Any) -> Message:
        msgs = self._state.messages
        for idx in range(len(msgs) - 1, -1, -1):
            if msgs[idx].id == message_id:
                msgs[idx] = replace(msgs[idx], **changes)
                return msgs[idx]
        raise BusinessError(code="MESSAGE_NOT_FOUND", message=message_id, http_status=404)

    @staticmethod
    def _ensure_not_streaming(message: Message) -> None:
        if message.is_streaming:
            raise ValidationError(code="MESSAGE_STREAMING", message=f"message {message.id} is still streaming")

    def _persist(self) -> None:
        try:
            self._cache.save(list(self._state.messages))
        except Exception as e:
            logger.warning("Message cache save failed", extra={"extra": {"error": str(e)}})

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self._state)
