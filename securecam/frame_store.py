import threading
import time
from collections import namedtuple
from threading import Lock

Frame = namedtuple("Frame", ["data", "width", "height", "sequence", "timestamp"])


class FrameStore:
    """Single-slot holder for the most recent encoded still frame.

    The capture path is the only writer. Each publish swaps in a new immutable
    ``Frame`` under the lock, so readers always get a whole frame: either the
    previous one or the new one.
    """

    def __init__(self):
        self.lock = Lock()
        self.cond = threading.Condition(self.lock)
        self._frame = None
        self._sequence = 0

        self.fps = 0.0
        self.kbps = 0.0
        self.total_frames = 0
        self.client_count = 0

    def publish(self, data, width, height):
        if not data:
            return None
        now = time.time()
        with self.cond:
            previous = self._frame
            self._sequence += 1
            frame = Frame(bytes(data), int(width), int(height), self._sequence, now)
            self._frame = frame
            self.total_frames += 1

            if previous is not None:
                dt = now - previous.timestamp
                if dt > 0:
                    inst_fps = 1.0 / dt
                    inst_kbps = (len(frame.data) * 8.0 / dt) / 1000.0
                    self.fps = inst_fps if self.fps <= 0 else 0.8 * self.fps + 0.2 * inst_fps
                    self.kbps = inst_kbps if self.kbps <= 0 else 0.8 * self.kbps + 0.2 * inst_kbps

            self.cond.notify_all()
        return frame

    def latest(self):
        with self.lock:
            return self._frame

    def snapshot(self):
        with self.lock:
            return self._frame.data if self._frame is not None else None

    def wait_for_frame(self, after_sequence=0, timeout=None):
        """Block until a frame newer than ``after_sequence`` exists or timeout."""
        with self.cond:
            self.cond.wait_for(
                lambda: self._frame is not None and self._frame.sequence > after_sequence,
                timeout=timeout,
            )
            return self._frame

    def clear(self):
        with self.cond:
            self._frame = None
            self.fps = 0.0
            self.kbps = 0.0
            self.cond.notify_all()

    def acquire_client(self):
        with self.lock:
            self.client_count += 1

    def release_client(self):
        with self.lock:
            self.client_count = max(0, self.client_count - 1)

    def status(self):
        with self.lock:
            frame = self._frame
            return {
                "has_frame": frame is not None,
                "sequence": frame.sequence if frame is not None else 0,
                "bytes": len(frame.data) if frame is not None else 0,
                "frame_size": {
                    "width": frame.width if frame is not None else 0,
                    "height": frame.height if frame is not None else 0,
                },
                "fps": round(self.fps, 2),
                "kbps": round(self.kbps, 2),
                "total_frames": self.total_frames,
                "clients": self.client_count,
            }
