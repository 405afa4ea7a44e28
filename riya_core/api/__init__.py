"""对外 API：组装访客会话与回复服务。"""

from riya_core.api.service import (
    create_guest_chat,
    create_reply_service,
    get_conversation_messages,
    get_default_store,
    handle_completion,
)

__all__ = [
    "create_guest_chat",
    "create_reply_service",
    "get_conversation_messages",
    "get_default_store",
    "handle_completion",
]
