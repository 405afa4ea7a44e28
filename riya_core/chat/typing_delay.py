"""按消息长度估算“对方正在输入”的展示时长。"""

from __future__ import annotations

import random
from typing import Optional, Protocol

BASE_DELAY_MS = 800.0
MS_PER_CHAR = 50.0
MIN_DELAY_MS = 1000.0
MAX_DELAY_MS = 6000.0
JITTER = 0.25


class RandomSource(Protocol):
    def random(self) -> float:
        ...


def typing_delay(
    text: str,
    rng: Optional[RandomSource] = None,
    *,
    base_ms: float = BASE_DELAY_MS,
    per_char_ms: float = MS_PER_CHAR,
    min_ms: float = MIN_DELAY_MS,
    max_ms: float = MAX_DELAY_MS,
    jitter: float = JITTER,
) -> float:
    """返回展示 text 之前应等待的毫秒数。

    base + len(text) * per_char 先加上 ±jitter 的随机抖动，再裁剪到
    [min_ms, max_ms]，因此任何长度的文本结果都落在该区间内。
    """

    source = rng if rng is not None else random
    raw = base_ms + len(text or "") * per_char_ms
    variance = raw * jitter * (source.random() * 2 - 1)
    return min(max_ms, max(min_ms, raw + variance))
