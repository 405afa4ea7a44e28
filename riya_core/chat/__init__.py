"""访客聊天核心：打字延迟、开场白、调度器、合并发送队列与编排器。"""

from riya_core.chat.greetings import Greeting, greeting_by_time
from riya_core.chat.guest_chat import ChatView, GuestChatOptions, GuestChatOrchestrator, SessionContext
from riya_core.chat.typing_delay import typing_delay

__all__ = [
    "ChatView",
    "Greeting",
    "GuestChatOptions",
    "GuestChatOrchestrator",
    "SessionContext",
    "greeting_by_time",
    "typing_delay",
]
