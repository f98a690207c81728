"""Wall-clock helpers shared by the stores."""

from __future__ import annotations

import time
from collections.abc import Callable

#: A zero-argument callable returning epoch milliseconds.
Clock = Callable[[], int]


def now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)
