# escaperoom/game/core.py
# Small shared helpers for the stage engine and the vote coordinator.

from __future__ import annotations

import math
import time
from typing import Any, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_answer(s: Any) -> str:
    """Trim and lowercase; text answers compare case-insensitively."""
    if s is None:
        return ""
    return str(s).strip().lower()


def parse_number(s: Any) -> Optional[float]:
    """Parse a numeric guess; None when it is not a finite number."""
    try:
        v = float(str(s).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def window_start(now: int, window_ms: int) -> int:
    """Clock-aligned bucket start; every process derives the same value for the same instant."""
    return (now // window_ms) * window_ms


class ManualClock:
    """Settable millisecond clock, for local runs and tests."""

    def __init__(self, start_ms: int = 0):
        self.now = int(start_ms)

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += int(ms)
        return self.now
