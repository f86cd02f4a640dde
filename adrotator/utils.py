import random
from collections.abc import Sequence
from datetime import datetime
from typing import TypeVar

from adrotator.config import settings


T = TypeVar("T")


def normalize_error_message(error: Exception | str | object) -> str:
    if isinstance(error, Exception):
        message = str(error)
        return message or error.__class__.__name__
    return str(error)


def clamp_cooldown(seconds: int | str | None) -> int:
    floor = settings.cooldown_min_seconds
    ceiling = settings.cooldown_max_seconds
    try:
        value = int(seconds) if seconds is not None else floor
    except (TypeError, ValueError):
        value = floor
    return max(floor, min(ceiling, value))


def shuffled(items: Sequence[T], rng: random.Random | None = None) -> list[T]:
    # random.shuffle is an in-place Fisher-Yates
    copy = list(items)
    (rng or random).shuffle(copy)
    return copy


def utcnow() -> datetime:
    return datetime.utcnow()


def epoch_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)
