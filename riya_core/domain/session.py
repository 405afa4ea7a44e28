"""访客会话与消息额度状态机。

MessageLimitGate 把“额度计数”和“single-flight 守卫”放在同一个状态机里：

    ACTIVE(n) --begin_flush--> IN_FLIGHT(n)
    IN_FLIGHT(n) --commit_flush(k), n+k < limit--> ACTIVE(n+k)
    IN_FLIGHT(n) --commit_flush(k), n+k >= limit--> BLOCKED
    IN_FLIGHT(n) --abort_flush--> ACTIVE(n)
    ACTIVE(n), n >= limit --check_can_send--> BLOCKED
    BLOCKED --mark_converted--> CONVERTED

BLOCKED 对访客模式来说是终态，只有外部登录成功（mark_converted）才能离开。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .exceptions import FlushInFlight, MessageLimitReached


@dataclass
class GuestSession:
    """访客会话记录。

    message_count 只在一批消息被后端成功接收后增加，从不减少。
    """

    session_id: str
    message_count: int = 0
    converted: bool = False
    user_agent: Optional[str] = None


class GateState(str, Enum):
    ACTIVE = "active"
    IN_FLIGHT = "in_flight"
    BLOCKED = "blocked"
    CONVERTED = "converted"


@dataclass(frozen=True)
class LoginPrompt:
    """登录弹窗。

    dismissible=False 为额度耗尽后的强制登录墙；
    dismissible=True 由登录按钮、锁定功能等入口触发，可关闭，不影响计数。
    """

    dismissible: bool
    reason: str


class MessageLimitGate:
    def __init__(self, limit: int, count: int = 0, converted: bool = False):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if count < 0:
            raise ValueError("count must be >= 0")
        self.limit = limit
        self._count = count
        if converted:
            self._state = GateState.CONVERTED
        elif count >= limit:
            self._state = GateState.BLOCKED
        else:
            self._state = GateState.ACTIVE

    @property
    def count(self) -> int:
        return self._count

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self._count)

    @property
    def is_blocked(self) -> bool:
        return self._state is GateState.BLOCKED

    @property
    def in_flight(self) -> bool:
        return self._state is GateState.IN_FLIGHT

    def check_can_send(self) -> None:
        """新消息进入队列前调用；额度耗尽时切到 BLOCKED 并抛出 MessageLimitReached。"""

        if self._state is GateState.CONVERTED:
            return
        if self._state is GateState.BLOCKED or self._count >= self.limit:
            self._state = GateState.BLOCKED
            raise MessageLimitReached(
                code="GUEST_LIMIT_REACHED",
                message="Guest message limit reached, please log in",
                http_status=429,
                count=self._count,
                limit=self.limit,
            )

    def begin_flush(self) -> None:
        if self._state is GateState.IN_FLIGHT:
            raise FlushInFlight(code="FLUSH_IN_FLIGHT", message="A batch is already being sent")
        if self._state is GateState.BLOCKED:
            raise MessageLimitReached(
                code="GUEST_LIMIT_REACHED",
                message="Guest message limit reached, please log in",
                http_status=429,
                count=self._count,
                limit=self.limit,
            )
        if self._state is GateState.ACTIVE:
            self._state = GateState.IN_FLIGHT

    def commit_flush(self, accepted: int) -> GateState:
        """后端成功接收 accepted 条用户消息后调用，返回新的状态。"""

        if accepted < 0:
            raise ValueError("accepted must be >= 0")
        if self._state is GateState.CONVERTED:
            return self._state
        if self._state is not GateState.IN_FLIGHT:
            raise FlushInFlight(code="NO_FLUSH_IN_FLIGHT", message="commit_flush without begin_flush")
        self._count += accepted
        self._state = GateState.BLOCKED if self._count >= self.limit else GateState.ACTIVE
        return self._state

    def abort_flush(self) -> None:
        if self._state is GateState.IN_FLIGHT:
            self._state = GateState.ACTIVE

    def mark_converted(self) -> None:
        self._state = GateState.CONVERTED
