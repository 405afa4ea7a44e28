from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Protocol

from .models import ConversationRow, Role
from .session import GuestSession


@dataclass
class UserProfile:
    """登录用户资料，用于生成分龄人设 prompt。"""

    user_id: str
    username: str
    user_age: int
    user_gender: str


@dataclass
class DailyUsage:
    user_id: str
    usage_date: date
    message_count: int


class ConversationStore(Protocol):
    def append_message(self, session_id: str, role: Role, content: str) -> ConversationRow:
        ...

    def list_messages(self, session_id: str) -> List[ConversationRow]:
        ...


class GuestSessionStore(Protocol):
    def create_session(self, session_id: str, user_agent: Optional[str] = None) -> GuestSession:
        ...

    def get_session(self, session_id: str) -> Optional[GuestSession]:
        ...

    def update_message_count(self, session_id: str, message_count: int) -> None:
        ...

    def mark_converted(self, session_id: str) -> None:
        ...


class UserStore(Protocol):
    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...

    def get_usage(self, user_id: str, usage_date: date) -> DailyUsage:
        ...

    def increment_usage(self, user_id: str, usage_date: date, by: int = 1) -> DailyUsage:
        ...

    def is_pro(self, user_id: str) -> bool:
        ...
