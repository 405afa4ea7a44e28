"""Riya 的开场白：按 IST 时段选择问候语和快捷回复。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Tuple

IST = timezone(timedelta(hours=5, minutes=30), name="IST")


@dataclass(frozen=True)
class Greeting:
    slot: str
    text: str
    options: Tuple[str, ...]


MORNING = Greeting(
    slot="morning",
    text="Oye Kumbhkaran! Uth gaye ya abhi bhi bed mein ho? 😴",
    options=("Uth gaya", "Nahi"),
)
AFTERNOON = Greeting(
    slot="afternoon",
    text="Sachi batana... abhi kaam kar rahe ho ya bas screen ghoor ke acting kar rahe ho? 👀",
    options=("Acting kar raha hu", "Kaam kar raha hu"),
)
EVENING = Greeting(
    slot="evening",
    text="Oye, pohch gaye ghar? Ya abhi bhi traffic mein phase ho? 🚗",
    options=("Pohch gaya", "Traffic mein hu"),
)
LATE_NIGHT = Greeting(
    slot="late_night",
    text="Ek baat puchu? Bura toh nahi maanoge? 🙈",
    options=("Puch", "Nahi maanunga"),
)


def to_ist(now: datetime) -> datetime:
    """把时钟读数换算到 IST；naive datetime 视为 UTC。"""

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(IST)


def greeting_by_time(now: datetime) -> Greeting:
    """根据 IST 小时选择问候语：[6,12) 早上，[12,17) 下午，[17,22) 晚上，其余为深夜。"""

    hour = to_ist(now).hour
    if 6 <= hour < 12:
        return MORNING
    if 12 <= hour < 17:
        return AFTERNOON
    if 17 <= hour < 22:
        return EVENING
    return LATE_NIGHT


def next_midnight_ist(now: datetime) -> datetime:
    """下一个 IST 零点（以 UTC 表示），用于告诉免费用户额度何时重置。"""

    ist_now = to_ist(now)
    midnight = ist_now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    return midnight.astimezone(timezone.utc)
