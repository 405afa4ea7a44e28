"""访客聊天编排器。

把打字延迟、开场白、合并发送队列和额度状态机串成一次完整的访客会话：

1. start(): 新访客创建会话记录并展示按时段选择的开场白（暂不落库）；
   老访客恢复历史与计数，额度已满则直接弹出强制登录墙。
2. send(): 校验额度后把消息立即显示在对话中，并放进合并队列。
3. 静默窗口结束后发送整批消息：先补存待保存的开场白，再调用 completion
   端点，随后按打字延迟逐条展示回复，最后用后端实际接收的条数更新额度。
4. 任意网络/后端/存储错误：回滚本批乐观显示的消息，计数不变，提示用户重试。
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from riya_core.chat.batching import MessageBatcher
from riya_core.chat.greetings import greeting_by_time
from riya_core.chat.scheduler import AsyncioScheduler, Scheduler, wait_with_timeout
from riya_core.chat.typing_delay import RandomSource, typing_delay
from riya_core.domain.conversation import ConversationStore, GuestSessionStore
from riya_core.domain.exceptions import ApiError, BusinessError, MessageLimitReached
from riya_core.domain.models import ChatMessage, CompletionRequest
from riya_core.domain.session import GateState, GuestSession, LoginPrompt, MessageLimitGate
from riya_core.endpoints.base import CompletionEndpoint
from riya_core.infrastructure.logging.logger import logger

TRANSIENT_ERROR_TEXT = "oops, thoda glitch hua 😅 fir se bhej do?"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionContext:
    """一次访客会话的显式上下文，替代浏览器 localStorage 之类的全局查找。

    - session_id: 已有的访客会话 id；为空表示新访客。
    - clock: 返回当前时间的函数，开场白与时间戳都从这里取时间。
    """

    session_id: Optional[str] = None
    user_agent: Optional[str] = None
    clock: Callable[[], datetime] = _utcnow


@dataclass
class GuestChatOptions:
    message_limit: int = 25
    debounce_ms: float = 5000.0
    reply_gap_ms: float = 200.0
    block_modal_delay_ms: float = 1500.0
    completion_timeout_ms: Optional[float] = 30000.0
    typing: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, cfg) -> "GuestChatOptions":
        return cls(
            message_limit=cfg.guest_message_limit,
            debounce_ms=cfg.debounce_ms,
            reply_gap_ms=cfg.reply_gap_ms,
            block_modal_delay_ms=cfg.block_modal_delay_ms,
            completion_timeout_ms=cfg.completion_timeout_ms,
            typing={
                "base_ms": cfg.typing_base_ms,
                "per_char_ms": cfg.typing_per_char_ms,
                "min_ms": cfg.typing_min_ms,
                "max_ms": cfg.typing_max_ms,
                "jitter": cfg.typing_jitter,
            },
        )


class ChatView:
    """编排器向界面层推送的事件，默认全部忽略，界面按需覆写。"""

    def message_added(self, message: ChatMessage) -> None:
        pass

    def messages_removed(self, messages: List[ChatMessage]) -> None:
        pass

    def typing_changed(self, is_typing: bool) -> None:
        pass

    def quick_replies_changed(self, options: Optional[Tuple[str, ...]]) -> None:
        pass

    def login_prompt_changed(self, prompt: Optional[LoginPrompt]) -> None:
        pass

    def transient_error(self, text: str) -> None:
        pass


class GuestChatOrchestrator:
    def __init__(
        self,
        context: SessionContext,
        endpoint: CompletionEndpoint,
        conversation_store: ConversationStore,
        session_store: GuestSessionStore,
        scheduler: Optional[Scheduler] = None,
        view: Optional[ChatView] = None,
        options: Optional[GuestChatOptions] = None,
        rng: Optional[RandomSource] = None,
    ):
        self._context = context
        self._endpoint = endpoint
        self._store = conversation_store
        self._sessions = session_store
        self._scheduler = scheduler or AsyncioScheduler()
        self._view = view or ChatView()
        self._options = options or GuestChatOptions()
        self._rng = rng or random.Random()

        self._session: Optional[GuestSession] = None
        self._gate = MessageLimitGate(self._options.message_limit)
        self._messages: List[ChatMessage] = []
        self._pending_greeting: Optional[str] = None
        self._quick_replies: Optional[Tuple[str, ...]] = None
        self._login_prompt: Optional[LoginPrompt] = None
        self._is_typing = False
        self._batcher: MessageBatcher[ChatMessage] = MessageBatcher(
            self._scheduler,
            self._flush_batch,
            quiet_ms=self._options.debounce_ms,
            is_busy=lambda: self._gate.in_flight,
        )

    # ---- 只读状态 ----

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id if self._session else None

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def message_count(self) -> int:
        return self._gate.count

    @property
    def gate_state(self) -> GateState:
        return self._gate.state

    @property
    def pending_greeting(self) -> Optional[str]:
        return self._pending_greeting

    @property
    def quick_replies(self) -> Optional[Tuple[str, ...]]:
        return self._quick_replies

    @property
    def login_prompt(self) -> Optional[LoginPrompt]:
        return self._login_prompt

    @property
    def is_typing(self) -> bool:
        return self._is_typing

    @property
    def pending_batch(self) -> Tuple[str, ...]:
        return tuple(m.text for m in self._batcher.pending)

    # ---- 会话生命周期 ----

    async def start(self) -> GuestSession:
        """创建或恢复访客会话。"""

        session_id = self._context.session_id
        existing = self._sessions.get_session(session_id) if session_id else None

        if existing is None:
            session_id = session_id or str(uuid4())
            self._session = self._sessions.create_session(session_id, self._context.user_agent)
            self._log(logging.INFO, "guest_chat.session.created")
            greeting = greeting_by_time(self._context.clock())
            # 开场白等用户第一次发送时再落库
            self._pending_greeting = greeting.text
            self._set_typing(True)
            await self._scheduler.sleep(self._typing_delay(greeting.text))
            self._append(ChatMessage(text=greeting.text, is_user=False, timestamp=self._now_iso()))
            self._set_quick_replies(greeting.options)
            self._set_typing(False)
            return self._session

        self._session = existing
        self._gate = MessageLimitGate(
            self._options.message_limit,
            count=existing.message_count,
            converted=existing.converted,
        )
        history = self._store.list_messages(existing.session_id)
        if history:
            for row in history:
                self._append(row.to_chat_message())
            self._set_quick_replies(None)
        else:
            greeting = greeting_by_time(self._context.clock())
            self._pending_greeting = greeting.text
            self._append(ChatMessage(text=greeting.text, is_user=False, timestamp=self._now_iso()))
            self._set_quick_replies(greeting.options)
        self._log(
            logging.INFO,
            "guest_chat.session.restored",
            history=len(history),
            message_count=self._gate.count,
        )
        if self._gate.is_blocked:
            self._show_login(LoginPrompt(dismissible=False, reason="guest_limit"))
        return self._session

    def send(self, text: str) -> bool:
        """把一条用户消息放进合并队列；被拒绝（空消息或额度已满）时返回 False。"""

        text = (text or "").strip()
        if not text:
            return False
        if self._session is None:
            raise BusinessError(code="SESSION_NOT_STARTED", message="call start() before send()")
        if self._gate.state is GateState.CONVERTED:
            return False
        try:
            self._gate.check_can_send()
        except MessageLimitReached:
            self._log(logging.INFO, "guest_chat.send.rejected_limit", message_count=self._gate.count)
            self._show_login(LoginPrompt(dismissible=False, reason="guest_limit"))
            return False
        message = ChatMessage(text=text, is_user=True, timestamp=self._now_iso())
        self._append(message)
        self._set_quick_replies(None)
        self._batcher.enqueue(message)
        return True

    async def flush_now(self) -> bool:
        """跳过静默窗口立即发送当前队列。"""

        return await self._batcher.flush()

    async def wait_idle(self) -> None:
        await self._batcher.wait_idle()

    async def close(self) -> None:
        self._batcher.cancel()
        await self._batcher.wait_idle()

    # ---- 登录弹窗 ----

    def request_login(self, reason: str = "login_button") -> None:
        """登录按钮、锁定功能等入口触发的可关闭登录弹窗，不影响计数。"""

        if self._login_prompt is not None and not self._login_prompt.dismissible:
            return
        self._show_login(LoginPrompt(dismissible=True, reason=reason))

    def dismiss_login(self) -> bool:
        if self._login_prompt is None or not self._login_prompt.dismissible:
            return False
        self._show_login(None)
        return True

    def mark_converted(self) -> None:
        """外部登录成功后调用，访客模式结束。"""

        self._gate.mark_converted()
        self._batcher.cancel()
        if self._session is not None:
            self._session.converted = True
            self._sessions.mark_converted(self._session.session_id)
        self._show_login(None)
        self._log(logging.INFO, "guest_chat.session.converted", message_count=self._gate.count)

    # ---- 批量发送 ----

    async def _flush_batch(self, batch: List[ChatMessage]) -> bool:
        assert self._session is not None
        session_id = self._session.session_id
        try:
            self._gate.begin_flush()
        except MessageLimitReached:
            self._rollback(batch)
            self._show_login(LoginPrompt(dismissible=False, reason="guest_limit"))
            return False

        texts = [m.text for m in batch]
        self._log(logging.INFO, "guest_chat.flush.start", batch_size=len(texts))
        self._set_typing(True)
        try:
            try:
                if self._pending_greeting is not None:
                    self._store.append_message(session_id, "assistant", self._pending_greeting)
                    self._pending_greeting = None
                request = CompletionRequest(session_id=session_id, messages=texts, is_guest=True)
                response = await wait_with_timeout(
                    self._scheduler,
                    self._endpoint.complete(request),
                    self._options.completion_timeout_ms,
                )
                if not response.ok:
                    raise ApiError(code="COMPLETION_ERROR", message=response.error or "", http_status=502)
            except BusinessError as e:
                self._fail(batch, e.code, e.message)
                return False
            except Exception as e:
                # 端点或解析层的非业务异常同样按失败回滚
                logger.error(
                    "guest_chat.flush.unexpected_error",
                    exc_info=True,
                    extra={"extra": {"session_id": session_id, "error": str(e)}},
                )
                self._fail(batch, "UNEXPECTED_ERROR", str(e))
                return False

            replies = response.messages
            for i, reply in enumerate(replies):
                self._set_typing(True)
                await self._scheduler.sleep(self._typing_delay(reply))
                self._append(ChatMessage(text=reply, is_user=False, timestamp=self._now_iso()))
                self._set_typing(False)
                if i < len(replies) - 1:
                    await self._scheduler.sleep(self._options.reply_gap_ms)

            state = self._gate.commit_flush(len(texts))
            self._persist_count(session_id)
            self._log(
                logging.INFO,
                "guest_chat.flush.done",
                batch_size=len(texts),
                replies=len(replies),
                message_count=self._gate.count,
                state=state.value,
            )
        finally:
            # 任何路径退出都不能把 single-flight 留在 IN_FLIGHT
            self._gate.abort_flush()
            self._set_typing(False)

        if state is GateState.BLOCKED:
            dropped = self._batcher.discard_pending()
            if dropped:
                self._rollback(dropped)
            await self._scheduler.sleep(self._options.block_modal_delay_ms)
            self._show_login(LoginPrompt(dismissible=False, reason="guest_limit"))
        return True

    def _fail(self, batch: List[ChatMessage], code: str, message: str) -> None:
        self._log(
            logging.WARNING,
            "guest_chat.flush.failed",
            code=code,
            error=message,
            batch_size=len(batch),
        )
        self._gate.abort_flush()
        self._rollback(batch)
        self._set_typing(False)
        self._view.transient_error(TRANSIENT_ERROR_TEXT)

    def _rollback(self, batch: List[ChatMessage]) -> None:
        ids = {id(m) for m in batch}
        removed = [m for m in self._messages if id(m) in ids]
        self._messages = [m for m in self._messages if id(m) not in ids]
        if removed:
            self._view.messages_removed(removed)

    def _persist_count(self, session_id: str) -> None:
        try:
            self._sessions.update_message_count(session_id, self._gate.count)
        except BusinessError as e:
            # 后端已经收下这批消息，内存计数保持不变，只记录错误
            self._log(logging.ERROR, "guest_chat.count.persist_failed", code=e.code, error=e.message)

    # ---- 内部工具 ----

    def _typing_delay(self, text: str) -> float:
        return typing_delay(text, self._rng, **self._options.typing)

    def _now_iso(self) -> str:
        now = self._context.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    def _append(self, message: ChatMessage) -> None:
        self._messages.append(message)
        self._view.message_added(message)

    def _set_typing(self, is_typing: bool) -> None:
        if self._is_typing != is_typing:
            self._is_typing = is_typing
            self._view.typing_changed(is_typing)

    def _set_quick_replies(self, options: Optional[Tuple[str, ...]]) -> None:
        if self._quick_replies != options:
            self._quick_replies = options
            self._view.quick_replies_changed(options)

    def _show_login(self, prompt: Optional[LoginPrompt]) -> None:
        self._login_prompt = prompt
        self._view.login_prompt_changed(prompt)

    def _log(self, level: int, message: str, **fields: Any) -> None:
        payload: Dict[str, Any] = {"session_id": self.session_id}
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
