"""流式响应解码器。

响应体是按行分隔的帧序列：

    data: {"content": "Hi"}
    data: {"content": " there"}

一行一帧；以 ``data:`` 开头的是数据帧，其余部分是带 content 字段的 JSON。
输入分块可以在任意字节边界切开，跨块的半行会被缓冲到下一块再处理。
"""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, List, Optional, Union

from chat_core.infrastructure.logging.logger import logger
from chat_core.streaming.cancellation import CancellationToken

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

Chunk = Union[bytes, str]


class StreamDecoder:
    """增量帧解码器。feed() 返回本块内完整帧产生的内容片段，flush() 处理残余缓冲。"""

    def __init__(self, prefix: str = DATA_PREFIX):
        self._prefix = prefix
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.dropped_frames = 0

    def feed(self, chunk: Chunk) -> List[str]:
        if isinstance(chunk, bytes):
            text = self._utf8.decode(chunk)
        else:
            text = chunk
        if not text:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> List[str]:
        tail = self._utf8.decode(b"", final=True)
        residual = self._buffer + tail
        self._buffer = ""
        return self._parse_lines(residual.split("\n"))

    def _parse_lines(self, lines: List[str]) -> List[str]:
        fragments: List[str] = []
        for line in lines:
            fragment = self._parse_frame(line)
            if fragment:
                fragments.append(fragment)
        return fragments

    def _parse_frame(self, line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.strip() or not line.startswith(self._prefix):
            return None
        data_str = line[len(self._prefix):].strip()
        if not data_str or data_str == DONE_SENTINEL:
            return None
        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError as e:
            self._drop(line, f"invalid json: {e.msg}")
            return None
        if not isinstance(payload, dict):
            self._drop(line, "frame is not an object")
            return None
        content = payload.get("content")
        if not isinstance(content, str):
            return None
        return content

    def _drop(self, line: str, reason: str) -> None:
        self.dropped_frames += 1
        logger.warning(
            f"Dropped malformed stream frame: {reason}",
            extra={"extra": {"frame_preview": line[:80]}},
        )


async def decode_stream(
    chunks: AsyncIterable[Chunk],
    token: Optional[CancellationToken] = None,
    decoder: Optional[StreamDecoder] = None,
) -> AsyncIterator[str]:
    """把原始分块流转换为惰性的内容片段序列。

    每次读完一块都会检查取消标志；传输层异常原样向上抛出。
    """

    decoder = decoder or StreamDecoder()
    async for chunk in chunks:
        if token is not None:
            token.raise_if_cancelled()
        for fragment in decoder.feed(chunk):
            yield fragment
    for fragment in decoder.flush():
        yield fragment
