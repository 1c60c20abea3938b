from __future__ import annotations

import time


def now_ms() -> int:
    """Wall-clock time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)
