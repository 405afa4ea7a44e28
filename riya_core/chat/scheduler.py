"""可注入的定时器/时钟抽象。

聊天编排里只有三类挂起点：静默窗口定时器、completion 网络调用、
逐条回复的打字延迟。它们全部通过 Scheduler 完成，这样：

- 线上使用 AsyncioScheduler（事件循环的 call_later / asyncio.sleep）；
- 测试使用 ManualScheduler，通过 advance() 推进虚拟时间，不真正 sleep。

所有时长单位均为毫秒。
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Protocol, Set, Tuple, TypeVar

from riya_core.domain.exceptions import CompletionTimeout

T = TypeVar("T")


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def now_ms(self) -> float:
        ...

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        ...

    async def sleep(self, delay_ms: float) -> None:
        ...

    def spawn(self, coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
        ...


class AsyncioScheduler:
    """基于当前运行事件循环的真实调度器。"""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def now_ms(self) -> float:
        return asyncio.get_running_loop().time() * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(max(0.0, delay_ms) / 1000.0, callback)

    async def sleep(self, delay_ms: float) -> None:
        await asyncio.sleep(max(0.0, delay_ms) / 1000.0)

    def spawn(self, coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
        task = asyncio.get_running_loop().create_task(coro)
        # 保留强引用，避免任务在完成前被回收
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


class _ManualTimer:
    __slots__ = ("callback", "cancelled")

    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """虚拟时间调度器。

    定时器只在 advance() 时按到期顺序触发；每触发一个定时器后会让出
    若干次事件循环，让被唤醒的协程跑到下一个挂起点。
    """

    def __init__(self, settle_rounds: int = 50):
        self._now = 0.0
        self._seq = itertools.count()
        self._timers: List[Tuple[float, int, _ManualTimer]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._settle_rounds = settle_rounds

    def now_ms(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _ManualTimer(callback)
        heapq.heappush(self._timers, (self._now + max(0.0, delay_ms), next(self._seq), timer))
        return timer

    async def sleep(self, delay_ms: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self.call_later(delay_ms, lambda: fut.done() or fut.set_result(None))
        await fut

    def spawn(self, coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_timers(self) -> int:
        return sum(1 for _, _, t in self._timers if not t.cancelled)

    async def settle(self) -> None:
        for _ in range(self._settle_rounds):
            await asyncio.sleep(0)

    async def advance(self, delay_ms: float) -> None:
        """推进虚拟时间 delay_ms，按顺序触发期间到期的定时器。"""

        target = self._now + delay_ms
        await self.settle()
        while self._timers and self._timers[0][0] <= target:
            due, _, timer = heapq.heappop(self._timers)
            self._now = max(self._now, due)
            if not timer.cancelled:
                timer.callback()
            await self.settle()
        self._now = target
        await self.settle()


async def wait_with_timeout(scheduler: Scheduler, aw: Awaitable[T], timeout_ms: Optional[float]) -> T:
    """在 scheduler 的时钟上等待 aw，超时则取消并抛出 CompletionTimeout。"""

    task = asyncio.ensure_future(aw)
    if timeout_ms is None:
        return await task
    loop = asyncio.get_running_loop()
    expired = loop.create_future()
    handle = scheduler.call_later(timeout_ms, lambda: expired.done() or expired.set_result(None))
    try:
        done, _ = await asyncio.wait({task, expired}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        handle.cancel()
        if not expired.done():
            expired.cancel()
    if task in done:
        return task.result()
    task.cancel()
    raise CompletionTimeout(
        code="COMPLETION_TIMEOUT",
        message=f"completion did not return within {timeout_ms:.0f}ms",
        http_status=504,
    )
