"""Capture manager: camera selection, session lifecycle and frame publishing.

Hardware callbacks never touch the manager from arbitrary threads. The
subsystem posts them onto the manager's ``CameraHandler`` and every callback
carries the open generation it belongs to, so callbacks from a camera that has
since been stopped, switched or disposed are dropped.
"""

import enum
import threading
from functools import partial
from threading import RLock

from . import signaling
from .camera import CameraDescriptor, CameraHandler, JpegImageReader, OpenCVCameraSubsystem, dedupe_cameras
from .codec import rotate_jpeg
from .config import FACINGS, default_settings
from .errors import CameraUnavailableError, FrameCodecError
from .frame_store import FrameStore
from .logs import log, log_every
from .orientation import OrientationTracker, StaticOrientationSource, required_rotation
from .preferences import ConfigPreferenceStore

DRAIN_TIMEOUT_SECONDS = 5.0


class CaptureState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CAMERA_OPENING = "camera_opening"
    CAMERA_READY = "camera_ready"
    STREAMING = "streaming"
    STOPPED = "stopped"
    ERROR = "error"


ACTIVE_STATES = (CaptureState.CAMERA_OPENING, CaptureState.CAMERA_READY, CaptureState.STREAMING)


class CaptureManager:
    def __init__(self, subsystem=None, preferences=None, orientation_source=None,
                 settings=None, frame_store=None):
        self.settings = dict(settings or default_settings())
        if subsystem is None:
            subsystem = OpenCVCameraSubsystem(
                device_glob=self.settings["device_glob"],
                facing_rules=self.settings["facing_rules"],
                orientation_rules=self.settings["sensor_orientation_rules"],
                fps=self.settings["capture_fps"],
            )
        self.subsystem = subsystem
        self.preferences = preferences if preferences is not None else ConfigPreferenceStore()
        if orientation_source is None:
            orientation_source = StaticOrientationSource(self.settings["device_orientation"])
        self.orientation = OrientationTracker(orientation_source)
        self.frame_store = frame_store if frame_store is not None else FrameStore()

        self.frame_width = int(self.settings["capture_width"])
        self.frame_height = int(self.settings["capture_height"])
        self.frame_rate = int(self.settings["capture_fps"])

        self._lock = RLock()
        self._state = CaptureState.UNINITIALIZED
        self._initialized = threading.Event()
        self._ready = threading.Event()
        self._streaming = threading.Event()

        self._handler = None
        self._device = None
        self._session = None
        self._reader = None
        self._camera = None
        self._cameras = []
        self._generation = 0
        self._live_when_ready = False

        self.local_description = None
        self.last_error = ""

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------
    @property
    def state(self):
        with self._lock:
            return self._state

    @property
    def is_initialized(self):
        return self._initialized.is_set()

    @property
    def is_camera_ready(self):
        return self._ready.is_set()

    @property
    def is_streaming(self):
        return self._streaming.is_set()

    @property
    def current_camera(self):
        with self._lock:
            return self._camera

    def wait_until_ready(self, timeout=None):
        return self._ready.wait(timeout)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self):
        with self._lock:
            if self._initialized.is_set():
                log("[INFO] Capture manager already initialized")
                return True
            try:
                self.subsystem.acquire()
            except CameraUnavailableError as exc:
                self.last_error = str(exc)
                log(f"[ERROR] Camera subsystem unavailable: {exc}")
                return False

            self._handler = CameraHandler()
            self._handler.start()
            self.orientation.enable()
            self._state = CaptureState.INITIALIZED
            self._initialized.set()

        cameras = self.list_cameras()
        with self._lock:
            self._cameras = cameras
        log(f"[OK] Capture manager initialized ({len(cameras)} camera(s))")
        return True

    def list_cameras(self):
        try:
            cameras = dedupe_cameras(self.subsystem.enumerate_cameras())
        except (CameraUnavailableError, OSError) as exc:
            log(f"[WARN] Camera enumeration failed: {exc}")
            return []
        if not cameras:
            log("[WARN] No cameras found")
        return cameras

    def _resolve_camera(self, selector):
        cameras = self.list_cameras()
        if isinstance(selector, CameraDescriptor):
            return selector
        if isinstance(selector, str) and selector.strip().lower() in FACINGS:
            facing = selector.strip().lower()
            return next((camera for camera in cameras if camera.facing == facing), None)
        if selector is not None:
            wanted = str(selector).strip()
            match = next((camera for camera in cameras if camera.id == wanted), None)
            if match is None:
                log(f"[WARN] Requested camera {wanted} not found")
            return match

        saved_id = self.preferences.get_selected_camera_id()
        if saved_id is not None:
            match = next((camera for camera in cameras if camera.id == saved_id), None)
            if match is not None:
                log(f"[INFO] Using saved camera preference: {saved_id}")
                return match
            log(f"[WARN] Saved camera {saved_id} is not available; using default facing")

        facing = self.preferences.get_default_facing()
        match = next((camera for camera in cameras if camera.facing == facing), None)
        if match is not None:
            log(f"[INFO] Using default {facing} camera: {match.id}")
            return match
        return cameras[0] if cameras else None

    def start(self, camera_selector=None):
        """Request an asynchronous open; readiness is reported via the flags."""
        with self._lock:
            if self._state == CaptureState.UNINITIALIZED:
                log("[ERROR] Capture manager not initialized")
                return False
            if self._state == CaptureState.ERROR:
                log("[WARN] Capture manager is in error state; a fresh manager is required")
                return False
            if self._state in ACTIVE_STATES:
                log(f"[INFO] Camera already active ({self._state.value})")
                return False

            camera = self._resolve_camera(camera_selector)
            if camera is None:
                self.last_error = "No camera found"
                log("[ERROR] No camera found")
                return False

            previous_device = self._device
            self._device = None
            if previous_device is not None:
                previous_device.close()

            self._generation += 1
            generation = self._generation
            self._camera = camera
            self._reader = JpegImageReader(
                self.frame_width,
                self.frame_height,
                self.settings["jpeg_quality"],
            )
            self._state = CaptureState.CAMERA_OPENING
            self.last_error = ""
            log(
                f"[INFO] Opening {camera.display_name} (id {camera.id}, {camera.facing}, "
                f"sensor {camera.sensor_orientation})"
            )
            try:
                self.subsystem.open_camera(
                    camera,
                    self._handler,
                    partial(self._on_opened, generation),
                    partial(self._on_disconnected, generation),
                    partial(self._on_error, generation),
                )
            except CameraUnavailableError as exc:
                self._enter_error(f"Failed to open camera {camera.id}: {exc}")
                return False
        return True

    def go_live(self):
        with self._lock:
            if self._state == CaptureState.STREAMING:
                return True
            if self._state != CaptureState.CAMERA_READY:
                log(f"[WARN] Cannot go live before camera is ready (state {self._state.value})")
                return False
            self.local_description = signaling.local_offer(
                self.frame_width,
                self.frame_height,
                self.frame_rate,
            )
            self._state = CaptureState.STREAMING
            self._streaming.set()
        log("[OK] Camera is live")
        return True

    def stop(self):
        with self._lock:
            if self._state not in ACTIVE_STATES:
                return False
            self._generation += 1
            session = self._session
            self._session = None
            self._state = CaptureState.STOPPED
            self._ready.clear()
            self._streaming.clear()
            self._live_when_ready = False
        if session is not None:
            session.close()
        self.frame_store.clear()
        log("[INFO] Capture session stopped")
        return True

    def dispose(self):
        self.stop()
        with self._lock:
            if self._state == CaptureState.UNINITIALIZED and self._handler is None:
                return
            self._generation += 1
            session, self._session = self._session, None
            device, self._device = self._device, None
            reader, self._reader = self._reader, None
            handler, self._handler = self._handler, None

        if session is not None:
            session.close()
        if handler is not None and not handler.drain(DRAIN_TIMEOUT_SECONDS):
            log("[WARN] Camera handler did not drain before release")
        if device is not None:
            device.close()
        if reader is not None:
            reader.close()
        self.orientation.disable()
        if handler is not None:
            handler.quit_safely(DRAIN_TIMEOUT_SECONDS)
        self.subsystem.release()

        with self._lock:
            self._state = CaptureState.UNINITIALIZED
            self._initialized.clear()
            self._ready.clear()
            self._streaming.clear()
            self._camera = None
        self.frame_store.clear()
        log("[OK] Capture manager disposed")

    def switch(self, camera_id):
        with self._lock:
            was_streaming = self._state == CaptureState.STREAMING
            active = self._state in ACTIVE_STATES
        if active:
            self.stop()
        with self._lock:
            self._live_when_ready = was_streaming
        if not self.start(camera_id):
            with self._lock:
                self._live_when_ready = False
            return False
        self.preferences.save_selected_camera(self.current_camera.id)
        return True

    def toggle_facing(self):
        camera = self.current_camera
        current_facing = camera.facing if camera is not None else self.preferences.get_default_facing()
        target = "front" if current_facing == "back" else "back"
        match = next((item for item in self.list_cameras() if item.facing == target), None)
        if match is None:
            log(f"[ERROR] No {target} camera to switch to")
            return False
        return self.switch(match.id)

    # ------------------------------------------------------------------
    # Hardware callbacks (run on the camera handler thread)
    # ------------------------------------------------------------------
    def _is_current(self, generation):
        return generation == self._generation

    def _on_opened(self, generation, device):
        with self._lock:
            if not self._is_current(generation) or self._state != CaptureState.CAMERA_OPENING:
                stale = True
            else:
                stale = False
                self._device = device
                reader = self._reader
        if stale:
            device.close()
            return
        device.create_capture_session(
            reader,
            partial(self._on_configured, generation),
            partial(self._on_configure_failed, generation),
        )

    def _on_configured(self, generation, session):
        with self._lock:
            if not self._is_current(generation) or self._state != CaptureState.CAMERA_OPENING:
                stale = True
            else:
                stale = False
                self._session = session
                session.set_repeating_request(partial(self._on_image, generation))
                self._state = CaptureState.CAMERA_READY
                self._ready.set()
                go_live = self._live_when_ready
                self._live_when_ready = False
        if stale:
            session.close()
            return
        log("[OK] Capture session configured")
        if go_live:
            self.go_live()

    def _on_configure_failed(self, generation, session):
        with self._lock:
            if not self._is_current(generation):
                return
            self._enter_error("Failed to configure capture session")

    def _on_disconnected(self, generation, device):
        with self._lock:
            if not self._is_current(generation):
                return
            self._enter_error(f"Camera {device.id} disconnected")

    def _on_error(self, generation, device, error_code):
        with self._lock:
            if not self._is_current(generation):
                if device is not None:
                    device.close()
                return
            if device is not None and self._device is None:
                self._device = device
            self._enter_error(f"Camera error {error_code}")

    def _enter_error(self, message):
        # Caller holds the lock.
        self.last_error = message
        self._generation += 1
        session, self._session = self._session, None
        device, self._device = self._device, None
        self._state = CaptureState.ERROR
        self._ready.clear()
        self._streaming.clear()
        self._live_when_ready = False
        if session is not None:
            session.close()
        if device is not None:
            device.close()
        log(f"[ERROR] {message}")

    def _on_image(self, generation, data):
        if not self._is_current(generation):
            return
        self.on_frame(data)

    # ------------------------------------------------------------------
    # Frame pipeline
    # ------------------------------------------------------------------
    def required_rotation(self):
        camera = self.current_camera
        if camera is None:
            return 0
        return required_rotation(camera.sensor_orientation, self.orientation.orientation, camera.facing)

    def on_frame(self, raw_encoded_bytes):
        rotation = self.required_rotation()
        data = raw_encoded_bytes
        width, height = self.frame_width, self.frame_height
        if rotation:
            try:
                data, width, height = rotate_jpeg(
                    raw_encoded_bytes,
                    rotation,
                    self.settings["rotated_jpeg_quality"],
                )
            except FrameCodecError as exc:
                log_every("rotate-failure", 5.0, f"[WARN] Frame rotation failed, publishing unrotated: {exc}")
                data = raw_encoded_bytes
                width, height = self.frame_width, self.frame_height
        frame = self.frame_store.publish(data, width, height)
        if frame is not None:
            log_every("frame", 10.0, f"[INFO] Published frame {frame.sequence}: {len(frame.data)} bytes")
        return frame

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def cameras(self):
        with self._lock:
            return list(self._cameras)

    def status(self):
        camera = self.current_camera
        with self._lock:
            state = self._state
            last_error = self.last_error
        return {
            "state": state.value,
            "initialized": self.is_initialized,
            "camera_ready": self.is_camera_ready,
            "streaming": self.is_streaming,
            "camera": camera.as_dict() if camera is not None else None,
            "device_orientation": self.orientation.orientation,
            "required_rotation": self.required_rotation(),
            "frame_width": self.frame_width,
            "frame_height": self.frame_height,
            "last_error": last_error,
            "frames": self.frame_store.status(),
        }
