import enum
import threading
from threading import Lock

from .config import DEFAULT_WATCHDOG_INTERVAL_SECONDS, DEFAULT_WATCHDOG_STALL_TICKS
from .logs import log


class WatchdogState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class Watchdog:
    """Periodic health check that restarts stalled parts of the service.

    A capture manager that is initialized but not ready is considered stalled.
    The stall has to persist for ``stall_ticks`` consecutive polls before the
    supervisor performs one ordered restart.
    """

    def __init__(self, supervisor, interval=DEFAULT_WATCHDOG_INTERVAL_SECONDS,
                 stall_ticks=DEFAULT_WATCHDOG_STALL_TICKS):
        self.supervisor = supervisor
        self.interval = max(0.01, float(interval))
        self.stall_ticks = max(1, int(stall_ticks))
        self._lock = Lock()
        self._state = WatchdogState.IDLE
        self._stop_event = threading.Event()
        self._thread = None
        self._stalled_polls = 0

        self.restart_count = 0
        self.http_restart_count = 0

    @property
    def state(self):
        with self._lock:
            return self._state

    @property
    def stalled_polls(self):
        return self._stalled_polls

    def start(self):
        with self._lock:
            if self._state != WatchdogState.IDLE:
                return False
            self._state = WatchdogState.RUNNING
            self._thread = threading.Thread(target=self._run, name="Watchdog", daemon=True)
            self._thread.start()
        log(f"[WATCHDOG] Started (interval {self.interval:.1f}s, stall ticks {self.stall_ticks})")
        return True

    def stop(self, timeout=2.0):
        with self._lock:
            if self._state == WatchdogState.STOPPED:
                return
            self._state = WatchdogState.STOPPED
            thread = self._thread
        self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        log("[WATCHDOG] Stopped")

    def _run(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.check_once()
            except Exception as exc:
                log(f"[WATCHDOG] Health check failed: {exc}")

    def check_once(self):
        """Run a single poll; returns True when a capture restart happened."""
        supervisor = self.supervisor

        http_server = supervisor.http_server
        if http_server is None or not http_server.is_running:
            log("[WATCHDOG] HTTP server not running; restarting")
            supervisor.restart_http_server()
            self.http_restart_count += 1

        manager = supervisor.capture_manager
        if manager is None or not manager.is_initialized or manager.is_camera_ready:
            self._stalled_polls = 0
            return False

        self._stalled_polls += 1
        log(
            f"[WATCHDOG] Camera not ready ({manager.state.value}); "
            f"stalled for {self._stalled_polls}/{self.stall_ticks} checks"
        )
        if self._stalled_polls < self.stall_ticks:
            return False

        self._stalled_polls = 0
        self.restart_count += 1
        log(f"[WATCHDOG] Restarting capture (restart #{self.restart_count})")
        supervisor.restart_capture()
        return True
