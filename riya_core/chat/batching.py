"""连续消息的合并发送队列（debounce + single-flight）。

用户往往连发好几条短消息，如果每条都单独请求一次后端，既浪费又会让
回复顺序错乱。MessageBatcher 把静默窗口内的消息攒成一批，窗口结束后
一次性交给 on_flush。
"""

from __future__ import annotations

from typing import Awaitable, Callable, Generic, List, Optional, Tuple, TypeVar

from riya_core.chat.scheduler import Scheduler, TimerHandle
from riya_core.infrastructure.logging.logger import logger

T = TypeVar("T")

DEFAULT_QUIET_MS = 5000.0


class MessageBatcher(Generic[T]):
    """静默窗口合并队列。

    - enqueue(item): 追加到 pending，并重新开始静默计时。
    - 计时到期：调用一次 flush()，先原子地取走并清空 pending，再交给 on_flush。
    - single-flight：is_busy() 为 True 时 flush() 是 no-op，期间新进来的消息
      保留在 pending 中，等当前批次结束后重新计时再发。
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_flush: Callable[[List[T]], Awaitable[bool]],
        quiet_ms: float = DEFAULT_QUIET_MS,
        is_busy: Optional[Callable[[], bool]] = None,
    ):
        self._scheduler = scheduler
        self._on_flush = on_flush
        self._quiet_ms = quiet_ms
        self._is_busy = is_busy or (lambda: self._flushing)
        self._pending: List[T] = []
        self._timer: Optional[TimerHandle] = None
        self._task = None
        self._flushing = False
        self._closed = False

    @property
    def pending(self) -> Tuple[T, ...]:
        return tuple(self._pending)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def enqueue(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("batcher is closed")
        self._pending.append(item)
        logger.info(
            "batcher.enqueue",
            extra={"extra": {"pending": len(self._pending), "quiet_ms": self._quiet_ms}},
        )
        self._restart_timer()

    def discard_pending(self) -> List[T]:
        """丢弃尚未发送的消息并停止计时，返回被丢弃的条目。"""

        dropped, self._pending = self._pending, []
        self._cancel_timer()
        return dropped

    def cancel(self) -> None:
        self._closed = True
        self._cancel_timer()

    async def flush(self) -> bool:
        """立即发送当前 pending；正在发送或没有消息时返回 False。"""

        if self._is_busy() or not self._pending:
            return False
        batch, self._pending = self._pending, []
        self._cancel_timer()
        self._flushing = True
        try:
            return await self._on_flush(batch)
        finally:
            self._flushing = False
            if self._pending and self._timer is None and not self._closed:
                self._restart_timer()

    async def wait_idle(self) -> None:
        task = self._task
        if task is not None and not task.done():
            await task

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self._quiet_ms, self._on_quiet)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_quiet(self) -> None:
        self._timer = None
        if self._is_busy():
            # 当前批次结束后 flush() 的 finally 会重新计时
            logger.info("batcher.quiet.skipped_in_flight", extra={"extra": {"pending": len(self._pending)}})
            return
        self._task = self._scheduler.spawn(self.flush())
