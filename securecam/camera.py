"""Camera subsystem: descriptors, the background handler and OpenCV devices.

The subsystem behaves like a platform camera API. Opening a device,
configuring a capture session and delivering frames all happen off the
caller's thread and are reported through callbacks posted to a
``CameraHandler``.
"""

import glob
import os
import queue
import re
import threading
import time
from dataclasses import dataclass
from threading import Lock

import cv2

from .codec import encode_jpeg
from .errors import CameraUnavailableError, FrameCodecError
from .logs import log

# Error codes reported to ``on_error`` callbacks.
ERROR_CAMERA_IN_USE = 1
ERROR_MAX_CAMERAS_IN_USE = 2
ERROR_CAMERA_DISABLED = 3
ERROR_CAMERA_DEVICE = 4
ERROR_CAMERA_SERVICE = 5

_BACK_CAMERA_NAMES = {
    "0": "Main Camera",
    "1": "Front Camera",
    "2": "Wide Camera",
    "3": "Telephoto Camera",
    "4": "Ultra Wide Camera",
}


@dataclass(frozen=True)
class CameraDescriptor:
    id: str
    facing: str
    sensor_orientation: int = 0
    device_path: str = ""
    label: str = ""

    @property
    def display_name(self):
        if self.facing == "front":
            return "Front Camera"
        return _BACK_CAMERA_NAMES.get(self.id, f"Back Camera {self.id}")

    def as_dict(self):
        return {
            "id": self.id,
            "facing": self.facing,
            "sensor_orientation": self.sensor_orientation,
            "device_path": self.device_path,
            "label": self.label,
            "display_name": self.display_name,
        }


def dedupe_cameras(cameras):
    """Drop repeated ``(id, facing)`` pairs, keeping the first one seen."""
    seen = set()
    unique = []
    for camera in cameras:
        key = (camera.id, camera.facing)
        if key in seen:
            log(f"[WARN] Skipping duplicate camera {camera.id} ({camera.facing})")
            continue
        seen.add(key)
        unique.append(camera)
    return unique


# ---------------------------------------------------------------------------
# Background execution context
# ---------------------------------------------------------------------------
class CameraHandler:
    """Single worker thread that runs posted callbacks in order."""

    _QUIT = object()

    def __init__(self, name="CameraBackground"):
        self.name = name
        self._queue = queue.Queue()
        self._thread = None
        self._lock = Lock()
        self._accepting = False

    def start(self):
        with self._lock:
            if self._thread is not None:
                return
            self._accepting = True
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()

    def _run(self):
        while True:
            item = self._queue.get()
            if item is self._QUIT:
                return
            fn, args, kwargs = item
            try:
                fn(*args, **kwargs)
            except Exception as exc:
                log(f"[ERROR] {self.name} callback {getattr(fn, '__name__', fn)} failed: {exc}")

    def post(self, fn, *args, **kwargs):
        with self._lock:
            if not self._accepting:
                return False
            self._queue.put((fn, args, kwargs))
            return True

    def is_current_thread(self):
        return self._thread is not None and threading.current_thread() is self._thread

    @property
    def is_alive(self):
        return self._thread is not None and self._thread.is_alive()

    def drain(self, timeout=None):
        """Wait until every callback posted so far has run."""
        if self.is_current_thread():
            return True
        done = threading.Event()
        if not self.post(done.set):
            return not self.is_alive
        return done.wait(timeout)

    def quit_safely(self, timeout=None):
        """Stop accepting work, run what is queued, then join the thread."""
        with self._lock:
            self._accepting = False
            thread = self._thread
            if thread is None:
                return
            self._queue.put(self._QUIT)
        if threading.current_thread() is not thread:
            thread.join(timeout)
        with self._lock:
            if self._thread is thread and not thread.is_alive():
                self._thread = None


# ---------------------------------------------------------------------------
# Output surface
# ---------------------------------------------------------------------------
class JpegImageReader:
    """Encoded-still output surface: turns raw frames into sized JPEG bytes."""

    def __init__(self, width, height, quality):
        self.width = int(width)
        self.height = int(height)
        self.quality = int(quality)
        self.closed = False

    def encode(self, frame):
        if self.closed:
            raise FrameCodecError("Image reader closed")
        height, width = frame.shape[:2]
        if (width, height) != (self.width, self.height):
            frame = cv2.resize(frame, (self.width, self.height), interpolation=cv2.INTER_AREA)
        return encode_jpeg(frame, self.quality)

    def close(self):
        self.closed = True


# ---------------------------------------------------------------------------
# V4L2 discovery helpers
# ---------------------------------------------------------------------------
def _video_sysfs_dir(device_path):
    if os.name == "nt":
        return None
    base = os.path.basename(str(device_path))
    if not re.fullmatch(r"video\d+", base):
        return None
    return os.path.join("/sys/class/video4linux", base)


def _read_text(path):
    try:
        with open(path, "r", encoding="utf-8") as fp:
            return fp.read().strip()
    except OSError:
        return ""


def _video_device_label(device_path):
    sysfs_dir = _video_sysfs_dir(device_path)
    if not sysfs_dir:
        return ""
    return _read_text(os.path.join(sysfs_dir, "name"))


def _video_device_index(device_path):
    base = os.path.basename(str(device_path))
    match = re.fullmatch(r"video(\d+)", base)
    if not match:
        return None
    return int(match.group(1))


def _lookup_rule(rules, camera_id, device_path):
    for key in (camera_id, device_path, os.path.basename(device_path)):
        if key and key in rules:
            return rules[key]
    return None


# ---------------------------------------------------------------------------
# OpenCV-backed devices
# ---------------------------------------------------------------------------
class OpenCVCaptureSession:
    """Continuous capture from one device into a JPEG output surface."""

    READ_FAILURE_LIMIT = 3

    def __init__(self, device, reader, handler, fps):
        self.device = device
        self.reader = reader
        self.handler = handler
        self.frame_interval = 1.0 / float(max(1, int(fps)))
        self._stop = threading.Event()
        self._thread = None
        self._pending = threading.Event()

    def set_repeating_request(self, on_image):
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._capture_loop,
            args=(on_image,),
            name=f"CameraCapture-{self.device.id}",
            daemon=True,
        )
        self._thread.start()

    def _deliver(self, on_image, jpeg):
        try:
            on_image(jpeg)
        finally:
            self._pending.clear()

    def _capture_loop(self, on_image):
        read_failures = 0
        next_emit = 0.0
        while not self._stop.is_set():
            ok, frame = self.device.read()
            if self._stop.is_set():
                break
            if not ok or frame is None:
                read_failures += 1
                if read_failures < self.READ_FAILURE_LIMIT:
                    time.sleep(0.05)
                    continue
                log(f"[WARN] Camera read failed on {self.device.device_path}; reporting disconnect")
                self.device.report_disconnected()
                return
            read_failures = 0

            now = time.monotonic()
            if now < next_emit:
                continue
            next_emit = now + self.frame_interval

            # Keep one frame in flight, like an image reader holding its latest image.
            if self._pending.is_set():
                continue
            try:
                jpeg = self.reader.encode(frame)
            except FrameCodecError as exc:
                log(f"[WARN] Dropping frame from {self.device.device_path}: {exc}")
                continue
            self._pending.set()
            if not self.handler.post(self._deliver, on_image, jpeg):
                self._pending.clear()

    def close(self):
        self._stop.set()
        thread = self._thread
        if thread is not None and threading.current_thread() is not thread:
            thread.join(timeout=2.0)
        self._thread = None


class OpenCVCameraDevice:
    def __init__(self, camera_id, device_path, capture, handler, on_disconnected, fps):
        self.id = camera_id
        self.device_path = device_path
        self.capture = capture
        self.handler = handler
        self.fps = fps
        self._on_disconnected = on_disconnected
        self._lock = Lock()

    def read(self):
        with self._lock:
            if self.capture is None:
                return False, None
            return self.capture.read()

    def report_disconnected(self):
        self.handler.post(self._on_disconnected, self)

    def create_capture_session(self, reader, on_configured, on_configure_failed):
        self.handler.post(self._configure, reader, on_configured, on_configure_failed)

    def _configure(self, reader, on_configured, on_configure_failed):
        with self._lock:
            capture = self.capture
            if capture is not None:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, float(reader.width))
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, float(reader.height))
                capture.set(cv2.CAP_PROP_FPS, float(self.fps))
        if capture is None or not capture.isOpened():
            on_configure_failed(None)
            return
        on_configured(OpenCVCaptureSession(self, reader, self.handler, self.fps))

    def close(self):
        with self._lock:
            capture = self.capture
            self.capture = None
        if capture is not None:
            capture.release()


class OpenCVCameraSubsystem:
    """Camera subsystem over OpenCV ``VideoCapture`` and V4L2 device nodes."""

    WARMUP_READS = 18

    def __init__(self, device_glob="/dev/video*", facing_rules=None,
                 orientation_rules=None, fps=30):
        self.device_glob = device_glob
        self.facing_rules = dict(facing_rules or {})
        self.orientation_rules = dict(orientation_rules or {})
        self.fps = fps
        self.acquired = False

    def acquire(self):
        if not hasattr(cv2, "VideoCapture"):
            raise CameraUnavailableError("OpenCV build has no video capture support")
        self.acquired = True
        log(f"[INFO] Camera subsystem ready (OpenCV {cv2.__version__})")
        return self

    def release(self):
        self.acquired = False

    def enumerate_cameras(self):
        """Raw enumeration; symlinked nodes can report the same camera twice."""
        cameras = []
        for path in sorted(glob.glob(self.device_glob)):
            real_path = os.path.realpath(path)
            index = _video_device_index(real_path)
            if index is None or not os.path.exists(real_path):
                continue
            camera_id = str(index)
            facing = _lookup_rule(self.facing_rules, camera_id, real_path) or "back"
            orientation = _lookup_rule(self.orientation_rules, camera_id, real_path) or 0
            cameras.append(
                CameraDescriptor(
                    id=camera_id,
                    facing=facing,
                    sensor_orientation=int(orientation),
                    device_path=real_path,
                    label=_video_device_label(real_path),
                )
            )
        return cameras

    def open_camera(self, camera, handler, on_opened, on_disconnected, on_error):
        if not self.acquired:
            raise CameraUnavailableError("Camera subsystem not acquired")
        handler.post(self._open, camera, handler, on_opened, on_disconnected, on_error)

    def _open_capture(self, camera):
        if os.name == "nt":
            backends = [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_ANY]
        else:
            backends = [cv2.CAP_V4L2, cv2.CAP_ANY]
        sources = []
        if camera.device_path:
            sources.extend((camera.device_path, backend) for backend in backends)
        if camera.id.isdigit():
            sources.extend((int(camera.id), backend) for backend in backends)

        for source, backend in sources:
            try:
                capture = cv2.VideoCapture(source, backend)
            except cv2.error:
                capture = None
            if capture is None or not capture.isOpened():
                if capture is not None:
                    capture.release()
                continue
            # Some stacks report opened before frames flow; require one good read.
            for _ in range(self.WARMUP_READS):
                ok, frame = capture.read()
                if ok and frame is not None:
                    return capture
                time.sleep(0.03)
            capture.release()
        return None

    def _open(self, camera, handler, on_opened, on_disconnected, on_error):
        capture = self._open_capture(camera)
        if capture is None:
            log(f"[WARN] Unable to open camera {camera.id} ({camera.device_path or 'index'})")
            on_error(None, ERROR_CAMERA_DEVICE)
            return
        device = OpenCVCameraDevice(
            camera.id,
            camera.device_path,
            capture,
            handler,
            on_disconnected,
            self.fps,
        )
        on_opened(device)
