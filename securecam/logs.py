"""Console logging shared by every securecam component.

Lines look like ``[12:04:51] [WARN] Camera 0 reported error 4``. A sink can be
installed to divert lines (a terminal UI, a test collector) instead of stdout.
"""

import datetime
import time
from threading import Lock

_sink = None
_sink_lock = Lock()
_print_lock = Lock()

_throttle_marks = {}
_throttle_lock = Lock()


def set_log_sink(sink):
    """Route log lines to ``sink(line)``; ``None`` restores stdout."""
    global _sink
    with _sink_lock:
        _sink = sink


def log(message):
    with _sink_lock:
        sink = _sink
    if sink is not None:
        sink(message)
        return
    line = f"[{datetime.datetime.now().strftime('%H:%M:%S')}] {message}"
    with _print_lock:
        print(line, flush=True)


def log_every(key, interval_seconds, message):
    """Log at most once per ``interval_seconds`` for ``key`` (per-frame paths)."""
    now = time.monotonic()
    with _throttle_lock:
        last = _throttle_marks.get(key)
        if last is not None and (now - last) < interval_seconds:
            return False
        _throttle_marks[key] = now
    log(message)
    return True
