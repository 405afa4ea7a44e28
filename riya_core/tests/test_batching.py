import asyncio

import pytest

from riya_core.chat.batching import MessageBatcher
from riya_core.chat.scheduler import ManualScheduler, wait_with_timeout
from riya_core.domain.exceptions import CompletionTimeout


def test_batcher_coalesces_messages_in_quiet_window():
    async def scenario():
        sched = ManualScheduler()
        flushed = []

        async def on_flush(batch):
            flushed.append(list(batch))
            return True

        batcher = MessageBatcher(sched, on_flush, quiet_ms=5000)
        batcher.enqueue("a")
        await sched.advance(1000)
        batcher.enqueue("b")
        await sched.advance(1000)
        batcher.enqueue("c")
        await sched.advance(4999)
        assert flushed == []
        await sched.advance(1)
        assert flushed == [["a", "b", "c"]]
        assert batcher.pending == ()
        assert not batcher.timer_armed

    asyncio.run(scenario())


def test_batcher_single_flight_rearms_after_flush():
    async def scenario():
        sched = ManualScheduler()
        release = asyncio.Event()
        flushed = []

        async def on_flush(batch):
            flushed.append(list(batch))
            if len(flushed) == 1:
                await release.wait()
            return True

        batcher = MessageBatcher(sched, on_flush, quiet_ms=5000)
        batcher.enqueue("a")
        await sched.advance(5000)
        assert flushed == [["a"]]

        # 第一批还在发送中，新消息的计时到期也不会再发
        batcher.enqueue("b")
        await sched.advance(5000)
        assert flushed == [["a"]]
        assert await batcher.flush() is False
        assert batcher.pending == ("b",)

        release.set()
        await sched.settle()
        assert batcher.timer_armed
        await sched.advance(5000)
        assert flushed == [["a"], ["b"]]

    asyncio.run(scenario())


def test_batcher_discard_and_cancel():
    async def scenario():
        sched = ManualScheduler()
        flushed = []

        async def on_flush(batch):
            flushed.append(batch)
            return True

        batcher = MessageBatcher(sched, on_flush, quiet_ms=100)
        batcher.enqueue(1)
        batcher.enqueue(2)
        assert batcher.discard_pending() == [1, 2]
        await sched.advance(1000)
        assert flushed == []

        batcher.cancel()
        with pytest.raises(RuntimeError):
            batcher.enqueue(3)

    asyncio.run(scenario())


def test_wait_with_timeout_uses_scheduler_clock():
    async def scenario():
        sched = ManualScheduler()

        async def never():
            await asyncio.Event().wait()

        task = asyncio.ensure_future(wait_with_timeout(sched, never(), 30000))
        await sched.advance(29999)
        assert not task.done()
        await sched.advance(1)
        assert task.done()
        with pytest.raises(CompletionTimeout):
            task.result()
        assert sched.pending_timers == 0

    asyncio.run(scenario())


def test_wait_with_timeout_returns_result():
    async def scenario():
        sched = ManualScheduler()

        async def quick():
            return 42

        assert await wait_with_timeout(sched, quick(), 1000) == 42
        assert sched.pending_timers == 0

    asyncio.run(scenario())
