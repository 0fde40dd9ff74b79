import cv2
import numpy as np
import pytest

from securecam.camera import ERROR_CAMERA_DEVICE, CameraDescriptor
from securecam.capture import CaptureManager
from securecam.config import default_settings
from securecam.logs import set_log_sink
from securecam.orientation import StaticOrientationSource


def make_jpeg(width=64, height=48, color=(0, 128, 255)):
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    # Mark the top-left corner so rotations are observable.
    image[: height // 4, : width // 4] = (255, 255, 255)
    ok, encoded = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), 90])
    assert ok
    return encoded.tobytes()


class FakeSession:
    def __init__(self, device):
        self.device = device
        self.on_image = None
        self.closed = False

    def set_repeating_request(self, on_image):
        self.on_image = on_image

    def emit(self, data):
        """Deliver one encoded frame the way the capture thread does."""
        if self.closed or self.on_image is None:
            return False
        return self.device.handler.post(self.on_image, data)

    def close(self):
        self.closed = True


class FakeDevice:
    def __init__(self, camera, handler, on_disconnected, configure_ok=True):
        self.id = camera.id
        self.camera = camera
        self.handler = handler
        self.on_disconnected = on_disconnected
        self.configure_ok = configure_ok
        self.sessions = []
        self.closed = False

    def create_capture_session(self, reader, on_configured, on_configure_failed):
        def configure():
            if not self.configure_ok:
                on_configure_failed(None)
                return
            session = FakeSession(self)
            self.sessions.append(session)
            on_configured(session)

        self.handler.post(configure)

    def report_disconnected(self):
        self.handler.post(self.on_disconnected, self)

    def close(self):
        self.closed = True


class FakeCameraSubsystem:
    """In-memory camera stack that answers through the real callback handler."""

    def __init__(self, cameras=None, open_ok=True, configure_ok=True):
        self.cameras = list(cameras) if cameras is not None else [
            CameraDescriptor(id="0", facing="back", sensor_orientation=90),
            CameraDescriptor(id="1", facing="front", sensor_orientation=270),
        ]
        self.open_ok = open_ok
        self.configure_ok = configure_ok
        self.acquired = False
        self.acquire_count = 0
        self.release_count = 0
        self.devices = []
        self.opened_ids = []

    def acquire(self):
        self.acquired = True
        self.acquire_count += 1
        return self

    def release(self):
        self.acquired = False
        self.release_count += 1

    def enumerate_cameras(self):
        return list(self.cameras)

    def open_camera(self, camera, handler, on_opened, on_disconnected, on_error):
        self.opened_ids.append(camera.id)

        def open_():
            if not self.open_ok:
                on_error(None, ERROR_CAMERA_DEVICE)
                return
            device = FakeDevice(camera, handler, on_disconnected, self.configure_ok)
            self.devices.append(device)
            on_opened(device)

        handler.post(open_)

    @property
    def last_device(self):
        return self.devices[-1] if self.devices else None

    @property
    def last_session(self):
        device = self.last_device
        if device is None or not device.sessions:
            return None
        return device.sessions[-1]


class MemoryPreferences:
    def __init__(self, selected=None, facing="back"):
        self.selected = selected
        self.facing = facing
        self.saved = []

    def get_selected_camera_id(self):
        return self.selected

    def get_default_facing(self):
        return self.facing

    def save_selected_camera(self, camera_id):
        self.selected = str(camera_id)
        self.saved.append(self.selected)

    def clear_selected_camera(self):
        self.selected = None

    def save_default_facing(self, facing):
        self.facing = facing
        return facing


@pytest.fixture(autouse=True)
def quiet_logs():
    lines = []
    set_log_sink(lines.append)
    yield lines
    set_log_sink(None)


@pytest.fixture()
def settings():
    values = default_settings()
    values.update(
        {
            "listen_host": "127.0.0.1",
            "listen_port": 0,
            "stream_interval": 0.01,
            "stream_wait": 0.01,
            "settle_seconds": 2.0,
            "start_delay": 0.0,
        }
    )
    return values


@pytest.fixture()
def subsystem():
    return FakeCameraSubsystem()


@pytest.fixture()
def preferences():
    return MemoryPreferences()


@pytest.fixture()
def manager(subsystem, preferences, settings):
    capture = CaptureManager(
        subsystem=subsystem,
        preferences=preferences,
        orientation_source=StaticOrientationSource(0),
        settings=settings,
    )
    yield capture
    capture.dispose()


@pytest.fixture()
def jpeg():
    return make_jpeg()
