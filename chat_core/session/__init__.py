"""会话编排层。

- store: SessionStore，持有会话状态并驱动单个交换。
- poller: MessagePoller，把远端新消息写入同一个 SessionStore。
"""

from chat_core.session.poller import MessagePoller
from chat_core.session.store import SessionStore

__all__ = ["MessagePoller", "SessionStore"]
