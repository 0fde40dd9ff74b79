"""Service composition and process-level supervision.

``Supervisor`` wires the capture manager, the HTTP server and the watchdog
together inside one process. ``run_with_supervisor`` optionally wraps that
process in a parent that relaunches it after abnormal exits.
"""

import os
import signal
import subprocess
import sys
import threading
import time
from threading import RLock

from .capture import CaptureManager
from .config import default_settings, env_truthy
from .frame_store import FrameStore
from .logs import log
from .server import CameraHttpServer
from .watchdog import Watchdog

SUPERVISOR_ENV_CHILD = "SECURECAM_CHILD"
SUPERVISOR_ENV_ENABLED = "SECURECAM_SUPERVISE"
SUPERVISOR_BACKOFF_MAX_SECONDS = 30.0
SUPERVISOR_CRASH_WINDOW_SECONDS = 60.0


class Supervisor:
    def __init__(self, settings=None, manager_factory=None, server_factory=None, frame_store=None):
        self.settings = dict(settings or default_settings())
        # One store outlives capture restarts so open streams keep their client slot.
        self.frame_store = frame_store if frame_store is not None else FrameStore()
        self.manager_factory = manager_factory or self._default_manager
        self.server_factory = server_factory or self._default_server

        self._lock = RLock()
        self._stop_event = threading.Event()
        self._started = False

        self.capture_manager = None
        self.http_server = None
        self.watchdog = Watchdog(
            self,
            interval=self.settings["watchdog_interval"],
            stall_ticks=self.settings["watchdog_stall_ticks"],
        )

    def _default_manager(self):
        return CaptureManager(settings=self.settings, frame_store=self.frame_store)

    def _default_server(self, capture_manager):
        return CameraHttpServer(capture_manager=capture_manager, settings=self.settings)

    @property
    def is_alive(self):
        return self._started and not self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        with self._lock:
            if self._started:
                return True
            self._started = True
            manager = self.manager_factory()
            if not manager.initialize():
                log("[WARN] Capture manager failed to initialize; watchdog will keep serving status")
            self.capture_manager = manager
            self.http_server = self.server_factory(manager)
            if not self.http_server.start():
                log("[ERROR] HTTP server failed to start; watchdog will retry")

        if self._stop_event.wait(float(self.settings["start_delay"])):
            return False
        self._bring_up(manager)
        self.watchdog.start()
        log("[OK] Camera service started")
        return True

    def _bring_up(self, manager):
        if not manager.is_initialized:
            return False
        if not manager.start():
            return False
        if not manager.wait_until_ready(float(self.settings["settle_seconds"])):
            log("[WARN] Camera did not become ready within the settle window")
            return False
        return manager.go_live()

    def stop(self):
        self._stop_event.set()
        self.watchdog.stop()
        with self._lock:
            http_server, self.http_server = self.http_server, None
            manager, self.capture_manager = self.capture_manager, None
        if http_server is not None:
            http_server.stop()
        if manager is not None:
            manager.dispose()
        log("[OK] Camera service stopped")

    def wait(self, timeout=None):
        return self._stop_event.wait(timeout)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def restart_http_server(self):
        with self._lock:
            if self._stop_event.is_set():
                return False
            previous = self.http_server
            if previous is not None:
                previous.stop()
            self.http_server = self.server_factory(self.capture_manager)
            return self.http_server.start()

    def restart_capture(self):
        with self._lock:
            if self._stop_event.is_set():
                return False
            previous = self.capture_manager
            if previous is not None:
                previous.dispose()

            manager = self.manager_factory()
            self.capture_manager = manager
            live = manager.initialize() and self._bring_up(manager)
            if self.http_server is not None:
                self.http_server.set_capture_manager(manager)
        if live:
            log("[OK] Capture restarted and live")
        else:
            log("[WARN] Capture restarted but camera is not live yet")
        return live


# ---------------------------------------------------------------------------
# Process supervision
# ---------------------------------------------------------------------------
def install_runtime_signal_handlers():
    def _handle_signal(signum, _frame):
        raise KeyboardInterrupt(f"signal {signum}")

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handle_signal)
        except (OSError, ValueError):
            pass


def terminate_process_tree(process, grace_seconds=1.0):
    """SIGTERM the child's process group, then SIGKILL it after ``grace_seconds``."""
    if process is None or not getattr(process, "pid", None):
        return

    if os.name == "nt":
        subprocess.run(
            ["taskkill", "/PID", str(process.pid), "/T", "/F"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        return

    try:
        os.killpg(process.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass


def child_command():
    return [sys.executable, "-m", "securecam"] + sys.argv[1:]


class ProcessSupervisor:
    """Runs the service in a child process and relaunches it after crashes.

    Crashes inside ``crash_window`` seconds of each other double the wait
    before the next launch, capped at ``max_backoff``. A lone crash waits
    ``initial_backoff``. Clean exits and stop requests end supervision.
    """

    CLEAN_EXIT_CODES = (0, 130, -signal.SIGINT, -signal.SIGTERM)

    def __init__(self, command=None, initial_backoff=1.0,
                 max_backoff=SUPERVISOR_BACKOFF_MAX_SECONDS,
                 crash_window=SUPERVISOR_CRASH_WINDOW_SECONDS):
        self.command = list(command) if command else child_command()
        self.initial_backoff = float(initial_backoff)
        self.max_backoff = float(max_backoff)
        self.crash_window = float(crash_window)
        self.stop_requested = threading.Event()

        self.restart_count = 0
        self.exit_codes = []
        self.backoff_waits = []
        self._backoff = self.initial_backoff
        self._crash_times = []
        self._child = None

    def request_stop(self, signum=None, _frame=None):
        self.stop_requested.set()
        terminate_process_tree(self._child)

    def record_crash(self, now):
        """Register a crash at ``now``; returns the wait before relaunching."""
        self._crash_times = [ts for ts in self._crash_times if (now - ts) <= self.crash_window]
        self._crash_times.append(now)
        wait = self._backoff
        if len(self._crash_times) <= 1:
            self._backoff = self.initial_backoff
        else:
            self._backoff = min(self.max_backoff, self._backoff * 2.0)
        return wait

    def _launch(self):
        child_env = os.environ.copy()
        child_env[SUPERVISOR_ENV_CHILD] = "1"
        popen_kwargs = {"env": child_env}
        if os.name == "nt":
            popen_kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            popen_kwargs["start_new_session"] = True
        self._child = subprocess.Popen(self.command, **popen_kwargs)
        # A stop that raced the launch still has to reach the new child.
        if self.stop_requested.is_set():
            terminate_process_tree(self._child)
        return self._child

    def _install_handlers(self):
        previous = {}
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                previous[sig] = signal.getsignal(sig)
                signal.signal(sig, self.request_stop)
            except (OSError, ValueError):
                pass
        return previous

    def run(self):
        previous_handlers = self._install_handlers()
        try:
            while not self.stop_requested.is_set():
                child = self._launch()
                exit_code = child.wait()
                self._child = None
                # Grandchildren left in the session go with it.
                terminate_process_tree(child)
                self.exit_codes.append(exit_code)

                if self.stop_requested.is_set() or exit_code in self.CLEAN_EXIT_CODES:
                    return 0

                wait = self.record_crash(time.time())
                self.backoff_waits.append(wait)
                log(f"[WATCHDOG] securecam child exited with code {exit_code}; restarting in {wait:.1f}s...")
                if self.stop_requested.wait(wait):
                    return 0
                self.restart_count += 1
            return 0
        finally:
            terminate_process_tree(self._child)
            self._child = None
            for sig, handler in previous_handlers.items():
                try:
                    signal.signal(sig, handler)
                except (OSError, ValueError):
                    pass


def run_with_supervisor(target):
    """Run ``target`` in this process, or supervise it from a parent process."""
    if env_truthy(SUPERVISOR_ENV_CHILD, default=False):
        return target()
    if not env_truthy(SUPERVISOR_ENV_ENABLED, default=True):
        return target()
    return ProcessSupervisor().run()
