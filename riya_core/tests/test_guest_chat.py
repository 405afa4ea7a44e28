import asyncio
import json
import tempfile
from datetime import datetime

import pytest

from riya_core.chat.greetings import IST, MORNING
from riya_core.chat.guest_chat import (
    TRANSIENT_ERROR_TEXT,
    ChatView,
    GuestChatOptions,
    GuestChatOrchestrator,
    SessionContext,
)
from riya_core.chat.scheduler import ManualScheduler
from riya_core.domain.exceptions import BusinessError, NetworkError, PersistenceError
from riya_core.domain.models import CompletionResponse
from riya_core.domain.session import GateState
from riya_core.infrastructure.storage.json_store import JsonConversationStore


class FixedRandom:
    def random(self):
        return 0.5


class RecordingView(ChatView):
    def __init__(self):
        self.events = []
        self.errors = []

    def message_added(self, message):
        self.events.append(("added", message.text))

    def messages_removed(self, messages):
        self.events.append(("removed", [m.text for m in messages]))

    def login_prompt_changed(self, prompt):
        self.events.append(("login", prompt))

    def transient_error(self, text):
        self.errors.append(text)


class FakeEndpoint:
    """模拟 riya-chat：成功时像真实后端一样写入用户消息和回复。"""

    def __init__(self, store, replies=("theek hai",), fail_first=0, hold=None):
        self.store = store
        self.replies = list(replies)
        self.fail_first = fail_first
        self.hold = hold
        self.calls = []

    async def complete(self, req):
        self.calls.append(req)
        if self.hold is not None:
            await self.hold.wait()
        if len(self.calls) <= self.fail_first:
            raise NetworkError(code="NETWORK_ERROR", message="offline")
        for text in req.messages:
            self.store.append_message(req.session_id, "user", text)
        for text in self.replies:
            self.store.append_message(req.session_id, "assistant", text)
        return CompletionResponse(messages=list(self.replies))


class BrokenJsonEndpoint:
    """后端返回了无法解析的响应体。"""

    def __init__(self):
        self.calls = []

    async def complete(self, req):
        self.calls.append(req)
        raise json.JSONDecodeError("Expecting value", "<html>", 0)


class ErrorPayloadEndpoint:
    async def complete(self, req):
        return CompletionResponse(error="MESSAGE_LIMIT_REACHED", remaining_messages=0)


class FlakyWriteStore:
    """前 n 次 append_message 写入失败，其余委托给真实存储。"""

    def __init__(self, store, fail_writes=1):
        self._store = store
        self.fail_writes = fail_writes

    def append_message(self, session_id, role, content):
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise PersistenceError(code="STORE_WRITE_ERROR", message="disk full")
        return self._store.append_message(session_id, role, content)

    def __getattr__(self, name):
        return getattr(self._store, name)


def _clock(hour=8):
    return lambda: datetime(2026, 1, 10, hour, 0, tzinfo=IST)


def _chat(store, endpoint, sched, session_id=None, view=None, **opts):
    return GuestChatOrchestrator(
        context=SessionContext(session_id=session_id, clock=_clock()),
        endpoint=endpoint,
        conversation_store=store,
        session_store=store,
        scheduler=sched,
        view=view,
        options=GuestChatOptions(**opts),
        rng=FixedRandom(),
    )


def _restored(store, session_id, count):
    store.create_session(session_id)
    store.append_message(session_id, "assistant", "hi")
    store.update_message_count(session_id, count)


def test_new_guest_greeting_then_first_flush():
    async def scenario(store):
        sched = ManualScheduler()
        endpoint = FakeEndpoint(store, replies=("kyu bore ho rahe ho",))
        chat = _chat(store, endpoint, sched)

        start = asyncio.ensure_future(chat.start())
        await sched.advance(10000)
        session = await start
        sid = session.session_id

        assert [m.text for m in chat.messages] == [MORNING.text]
        assert chat.quick_replies == MORNING.options
        assert chat.pending_greeting == MORNING.text
        # 开场白在第一次发送前不落库
        assert store.list_messages(sid) == []

        assert chat.send("bored hoon") is True
        assert chat.quick_replies is None
        assert chat.pending_batch == ("bored hoon",)
        await sched.advance(4999)
        assert endpoint.calls == []
        await sched.advance(1)
        assert len(endpoint.calls) == 1
        assert endpoint.calls[0].messages == ["bored hoon"]
        assert endpoint.calls[0].is_batch is False

        await sched.advance(10000)
        rows = store.list_messages(sid)
        assert [(r.role, r.content) for r in rows[:2]] == [
            ("assistant", MORNING.text),
            ("user", "bored hoon"),
        ]
        assert chat.message_count == 1
        assert store.get_session(sid).message_count == 1
        assert chat.pending_greeting is None
        assert [m.text for m in chat.messages] == [MORNING.text, "bored hoon", "kyu bore ho rahe ho"]
        assert not chat.is_typing

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_messages_in_quiet_window_are_sent_as_one_batch():
    async def scenario(store):
        sched = ManualScheduler()
        endpoint = FakeEndpoint(store)
        _restored(store, "g-batch", 3)
        chat = _chat(store, endpoint, sched, session_id="g-batch")
        await chat.start()

        chat.send("a")
        await sched.advance(1000)
        chat.send("b")
        await sched.advance(1000)
        chat.send("c")
        await sched.advance(4999)
        assert endpoint.calls == []
        await sched.advance(20000)
        assert len(endpoint.calls) == 1
        assert endpoint.calls[0].messages == ["a", "b", "c"]
        assert endpoint.calls[0].is_batch is True
        assert chat.message_count == 6

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_batch_crossing_limit_blocks_after_reply():
    async def scenario(store):
        sched = ManualScheduler()
        view = RecordingView()
        endpoint = FakeEndpoint(store, replies=("last one",))
        _restored(store, "g-24", 24)
        chat = _chat(store, endpoint, sched, session_id="g-24", view=view)
        await chat.start()
        assert chat.gate_state is GateState.ACTIVE

        assert chat.send("a") is True
        assert chat.send("b") is True
        await sched.advance(30000)

        assert chat.gate_state is GateState.BLOCKED
        assert chat.message_count == 26
        assert store.get_session("g-24").message_count == 26
        assert chat.login_prompt is not None and not chat.login_prompt.dismissible
        names = [e[0] for e in view.events]
        assert names.index("login") > view.events.index(("added", "last one"))

        # 登录墙之后的发送直接被拒绝，不会请求后端
        assert chat.send("c") is False
        await sched.advance(30000)
        assert len(endpoint.calls) == 1

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_restored_session_at_limit_rejects_send():
    async def scenario(store):
        sched = ManualScheduler()
        endpoint = FakeEndpoint(store)
        _restored(store, "g-25", 25)
        chat = _chat(store, endpoint, sched, session_id="g-25")
        await chat.start()

        assert chat.gate_state is GateState.BLOCKED
        assert chat.login_prompt.dismissible is False
        assert chat.send("one more") is False
        assert [m.text for m in chat.messages] == ["hi"]
        await sched.advance(10000)
        assert endpoint.calls == []
        assert sched.pending_timers == 0

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_failed_flush_rolls_back_then_retry_succeeds():
    async def scenario(store):
        sched = ManualScheduler()
        view = RecordingView()
        endpoint = FakeEndpoint(store, fail_first=1)
        _restored(store, "g-fail", 3)
        chat = _chat(store, endpoint, sched, session_id="g-fail", view=view)
        await chat.start()

        chat.send("hello?")
        await sched.advance(5000)
        assert [m.text for m in chat.messages] == ["hi"]
        assert ("removed", ["hello?"]) in view.events
        assert view.errors == [TRANSIENT_ERROR_TEXT]
        assert chat.message_count == 3
        assert chat.gate_state is GateState.ACTIVE
        assert not chat.is_typing

        chat.send("hello again")
        await sched.advance(20000)
        assert chat.message_count == 4
        assert [m.text for m in chat.messages] == ["hi", "hello again", "theek hai"]

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_pending_greeting_persisted_once_across_failure():
    async def scenario(store):
        sched = ManualScheduler()
        endpoint = FakeEndpoint(store, fail_first=1)
        chat = _chat(store, endpoint, sched)
        start = asyncio.ensure_future(chat.start())
        await sched.advance(10000)
        sid = (await start).session_id

        chat.send("pehla")
        await sched.advance(5000)
        assert chat.message_count == 0
        chat.send("doosra")
        await sched.advance(20000)

        greetings = [r for r in store.list_messages(sid) if r.content == MORNING.text]
        assert len(greetings) == 1
        assert chat.message_count == 1

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_completion_timeout_rolls_back():
    async def scenario(store):
        sched = ManualScheduler()
        view = RecordingView()
        endpoint = FakeEndpoint(store, hold=asyncio.Event())
        _restored(store, "g-slow", 0)
        chat = _chat(store, endpoint, sched, session_id="g-slow", view=view, completion_timeout_ms=30000)
        await chat.start()

        chat.send("sun rahe ho?")
        await sched.advance(5000)
        assert chat.is_typing
        await sched.advance(29999)
        assert view.errors == []
        await sched.advance(1)
        assert view.errors == [TRANSIENT_ERROR_TEXT]
        assert [m.text for m in chat.messages] == ["hi"]
        assert chat.message_count == 0
        assert chat.gate_state is GateState.ACTIVE

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_messages_sent_during_flight_go_in_next_batch():
    async def scenario(store):
        sched = ManualScheduler()
        hold = asyncio.Event()
        endpoint = FakeEndpoint(store, hold=hold)
        _restored(store, "g-flight", 0)
        chat = _chat(store, endpoint, sched, session_id="g-flight")
        await chat.start()

        chat.send("a")
        await sched.advance(5000)
        assert chat.gate_state is GateState.IN_FLIGHT
        chat.send("b")
        await sched.advance(5000)
        assert len(endpoint.calls) == 1

        hold.set()
        await sched.advance(20000)
        await sched.advance(20000)
        assert [c.messages for c in endpoint.calls] == [["a"], ["b"]]
        assert chat.message_count == 2

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_dismissible_login_does_not_touch_count():
    async def scenario(store):
        sched = ManualScheduler()
        _restored(store, "g-login", 5)
        chat = _chat(store, FakeEndpoint(store), sched, session_id="g-login")
        await chat.start()

        chat.request_login("locked_feature")
        assert chat.login_prompt.dismissible is True
        assert chat.dismiss_login() is True
        assert chat.login_prompt is None
        assert chat.message_count == 5
        assert chat.send("still here") is True

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_blocking_prompt_cannot_be_dismissed_and_conversion_ends_guest_mode():
    async def scenario(store):
        sched = ManualScheduler()
        _restored(store, "g-conv", 25)
        chat = _chat(store, FakeEndpoint(store), sched, session_id="g-conv")
        await chat.start()

        chat.request_login("login_button")
        assert chat.login_prompt.dismissible is False
        assert chat.dismiss_login() is False

        chat.mark_converted()
        assert chat.gate_state is GateState.CONVERTED
        assert chat.login_prompt is None
        assert store.get_session("g-conv").converted is True
        assert chat.send("hi") is False

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_restore_without_history_shows_greeting_immediately():
    async def scenario(store):
        sched = ManualScheduler()
        store.create_session("g-empty")
        chat = _chat(store, FakeEndpoint(store), sched, session_id="g-empty")
        await chat.start()
        assert [m.text for m in chat.messages] == [MORNING.text]
        assert chat.pending_greeting == MORNING.text
        assert chat.message_count == 0

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_send_requires_started_session():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=d)
        chat = _chat(store, FakeEndpoint(store), ManualScheduler())
        assert chat.send("   ") is False
        with pytest.raises(BusinessError) as exc:
            chat.send("hi")
        assert exc.value.code == "SESSION_NOT_STARTED"


def test_undecodable_reply_rolls_back_like_any_failure():
    async def scenario(store):
        sched = ManualScheduler()
        view = RecordingView()
        endpoint = BrokenJsonEndpoint()
        _restored(store, "g-json", 5)
        chat = _chat(store, endpoint, sched, session_id="g-json", view=view)
        await chat.start()

        chat.send("hello?")
        await sched.advance(5000)
        assert len(endpoint.calls) == 1
        assert [m.text for m in chat.messages] == ["hi"]
        assert view.errors == [TRANSIENT_ERROR_TEXT]
        assert chat.message_count == 5
        assert store.get_session("g-json").message_count == 5
        assert chat.gate_state is GateState.ACTIVE
        assert not chat.is_typing

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_error_payload_from_endpoint_rolls_back():
    async def scenario(store):
        sched = ManualScheduler()
        view = RecordingView()
        _restored(store, "g-limit", 2)
        chat = _chat(store, ErrorPayloadEndpoint(), sched, session_id="g-limit", view=view)
        await chat.start()

        chat.send("aur batao")
        await sched.advance(5000)
        assert [m.text for m in chat.messages] == ["hi"]
        assert ("removed", ["aur batao"]) in view.events
        assert view.errors == [TRANSIENT_ERROR_TEXT]
        assert chat.message_count == 2
        assert chat.gate_state is GateState.ACTIVE

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))


def test_greeting_write_failure_keeps_greeting_pending():
    async def scenario(store):
        sched = ManualScheduler()
        view = RecordingView()
        endpoint = FakeEndpoint(store)
        chat = GuestChatOrchestrator(
            context=SessionContext(clock=_clock()),
            endpoint=endpoint,
            conversation_store=FlakyWriteStore(store),
            session_store=store,
            scheduler=sched,
            view=view,
            options=GuestChatOptions(),
            rng=FixedRandom(),
        )
        start = asyncio.ensure_future(chat.start())
        await sched.advance(10000)
        sid = (await start).session_id

        chat.send("pehla")
        await sched.advance(5000)
        assert endpoint.calls == []
        assert chat.pending_greeting == MORNING.text
        assert [m.text for m in chat.messages] == [MORNING.text]
        assert view.errors == [TRANSIENT_ERROR_TEXT]
        assert chat.message_count == 0
        assert store.list_messages(sid) == []
        assert chat.gate_state is GateState.ACTIVE

        chat.send("doosra")
        await sched.advance(20000)
        greetings = [r for r in store.list_messages(sid) if r.content == MORNING.text]
        assert len(greetings) == 1
        assert chat.pending_greeting is None
        assert chat.message_count == 1

    with tempfile.TemporaryDirectory() as d:
        asyncio.run(scenario(JsonConversationStore(root=d)))
