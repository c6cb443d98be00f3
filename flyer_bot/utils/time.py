import threading
import time
from datetime import datetime

import pytz

UTC = pytz.UTC

_stamp_lock = threading.Lock()
_last_stamp = 0


def today():
    """
    Returns the current date in YYYY-MM-DD format using UTC timezone.
    Used to name the daily log file.
    """
    return datetime.now(UTC).strftime("%Y-%m-%d")


def utcnow() -> datetime:
    return datetime.now(UTC)


def artifact_stamp() -> int:
    """
    Millisecond timestamp that is strictly increasing inside this process.

    Two uploads in the same millisecond (same sender or not) still get
    different stamps, so artifact paths never collide.
    """
    global _last_stamp
    with _stamp_lock:
        now = int(time.time() * 1000)
        _last_stamp = max(now, _last_stamp + 1)
        return _last_stamp


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - started) * 1000)
