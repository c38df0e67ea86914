import time


def now_ms() -> int:
    """Current time in milliseconds since the epoch, the unit reminders are stored in."""
    return int(time.time() * 1000)
