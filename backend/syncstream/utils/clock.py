import time


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds (the unit stored in room state)."""
    return int(time.time() * 1000)
