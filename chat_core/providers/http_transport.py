"""基于 httpx 的流式生成端点适配器。

请求：POST {base_url}{path}，JSON 体 {"message": <content>}，
上下文模式下额外附带 "messages": [{"role", "content"}, ...]。
响应：以换行分隔的 ``data:`` 帧，逐块原样交给解码器。
"""

from typing import Any, AsyncIterator, Dict, Optional

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from chat_core.domain.models import GenerationRequest
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import CHAT_ENDPOINT, EndpointConfig


class HttpStreamTransport:
    """流式生成端点客户端实现。"""

    def __init__(
        self,
        cfg=settings,
        endpoint: EndpointConfig = CHAT_ENDPOINT,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        # http_transport 用于注入 httpx.MockTransport 等替身
        self._settings = cfg
        self._endpoint = endpoint
        self._http_transport = http_transport
        self.name = endpoint.name
        self.include_history = endpoint.include_history

    @property
    def url(self) -> str:
        base = (getattr(self._settings, "base_url", None) or "").rstrip("/")
        return f"{base}{self._endpoint.path}"

    async def stream(self, req: GenerationRequest) -> AsyncIterator[bytes]:
        payload = self._build_payload(req)
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                trust_env=False,
                transport=self._http_transport,
            ) as client:
                async with client.stream(
                    "POST",
                    self.url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "Accept": "text/event-stream",
                    },
                ) as resp:
                    if resp.status_code == 429:
                        raise RateLimitError(code="RATE_LIMIT", message="Rate limited (429)", http_status=429)
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        raise ApiError(
                            code="API_ERROR",
                            message=f"HTTP Error: {resp.status_code} {resp.reason_phrase}".strip(),
                            http_status=resp.status_code,
                            body=body[:500],
                        )
                    logger.info(
                        "Stream opened",
                        extra={"extra": {"endpoint": self.name, "status": resp.status_code}},
                    )
                    async for chunk in resp.aiter_bytes():
                        yield chunk
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__) from e

    def _build_payload(self, req: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": req.content}
        if self.include_history:
            payload["messages"] = [{"role": m.role, "content": m.content} for m in req.history]
        return payload
