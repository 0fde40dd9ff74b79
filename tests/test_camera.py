import os
import threading
import time

import cv2
import numpy as np
import pytest

from securecam.camera import CameraDescriptor, CameraHandler, JpegImageReader, OpenCVCameraSubsystem
from securecam.capture import CaptureManager, CaptureState
from securecam.codec import decode_jpeg
from securecam.errors import CameraUnavailableError
from securecam.orientation import StaticOrientationSource

from conftest import MemoryPreferences


class FakeVideoCapture:
    """Stands in for ``cv2.VideoCapture``: ``good_reads`` frames, then read failures."""

    instances = []
    good_reads = 60
    opens = True

    def __init__(self, source, backend=None):
        self.source = source
        self.backend = backend
        self.reads = 0
        self.released = False
        self.props = {}
        FakeVideoCapture.instances.append(self)

    def isOpened(self):
        return self.opens and not self.released

    def read(self):
        time.sleep(0.005)
        self.reads += 1
        if self.released or self.reads > self.good_reads:
            return False, None
        return True, np.full((48, 64, 3), self.reads % 255, dtype=np.uint8)

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def release(self):
        self.released = True


@pytest.fixture()
def fake_capture(monkeypatch):
    FakeVideoCapture.instances = []
    FakeVideoCapture.good_reads = 60
    FakeVideoCapture.opens = True
    monkeypatch.setattr(cv2, "VideoCapture", FakeVideoCapture)
    return FakeVideoCapture


@pytest.fixture()
def device_nodes(tmp_path):
    for name in ("video0", "video2", "not-a-camera"):
        (tmp_path / name).write_text("", encoding="utf-8")
    (tmp_path / "video9").symlink_to(tmp_path / "video0")
    return tmp_path


def _wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _opencv_manager(device_nodes, settings, **rules):
    subsystem = OpenCVCameraSubsystem(
        device_glob=str(device_nodes / "video*"),
        facing_rules=rules.get("facing_rules"),
        orientation_rules=rules.get("orientation_rules"),
        fps=settings["capture_fps"],
    )
    manager = CaptureManager(
        subsystem=subsystem,
        preferences=MemoryPreferences(),
        orientation_source=StaticOrientationSource(0),
        settings=settings,
    )
    return subsystem, manager


def test_enumeration_applies_rules_and_resolves_symlinks(device_nodes, settings):
    subsystem = OpenCVCameraSubsystem(
        device_glob=str(device_nodes / "video*"),
        facing_rules={"2": "front"},
        orientation_rules={"video0": 90},
    )
    cameras = subsystem.enumerate_cameras()
    assert [(camera.id, camera.facing) for camera in cameras] == [("0", "back"), ("2", "front"), ("0", "back")]
    assert cameras[0].sensor_orientation == 90
    assert cameras[2].device_path == os.path.realpath(device_nodes / "video0")


def test_open_before_acquire_is_refused(settings):
    subsystem = OpenCVCameraSubsystem()
    handler = CameraHandler()
    with pytest.raises(CameraUnavailableError):
        subsystem.open_camera(CameraDescriptor(id="0", facing="back"), handler, None, None, None)


def test_capture_publishes_frames_then_reports_disconnect(fake_capture, device_nodes, settings):
    subsystem, manager = _opencv_manager(device_nodes, settings)
    try:
        assert manager.initialize()
        assert len(manager.cameras()) == 2
        assert manager.start()
        assert manager.wait_until_ready(5.0)
        assert manager.go_live()

        capture = fake_capture.instances[0]
        assert capture.source == os.path.realpath(device_nodes / "video0")
        assert capture.backend == cv2.CAP_V4L2
        assert capture.props[cv2.CAP_PROP_FRAME_WIDTH] == 640.0
        assert capture.props[cv2.CAP_PROP_FPS] == float(settings["capture_fps"])

        assert _wait_for(lambda: manager.state == CaptureState.ERROR)
        assert manager.last_error == "Camera 0 disconnected"
        assert capture.released
        assert not manager.is_camera_ready
        assert manager.frame_store.status()["total_frames"] >= 1
        frame = manager.frame_store.latest()
        assert decode_jpeg(frame.data).shape[:2] == (480, 640)
    finally:
        manager.dispose()


def test_failed_open_reports_device_error(fake_capture, device_nodes, settings):
    fake_capture.opens = False
    subsystem, manager = _opencv_manager(device_nodes, settings)
    try:
        manager.initialize()
        assert manager.start()
        assert _wait_for(lambda: manager.state == CaptureState.ERROR)
        assert manager.last_error == "Camera error 4"
        # Path and index sources across both backends were tried and released.
        assert len(fake_capture.instances) == 4
        assert all(capture.released for capture in fake_capture.instances)
    finally:
        manager.dispose()


def test_capture_that_never_delivers_is_not_opened(fake_capture, device_nodes, settings):
    fake_capture.good_reads = 0
    subsystem, manager = _opencv_manager(device_nodes, settings)
    try:
        manager.initialize()
        manager.start()
        assert _wait_for(lambda: manager.state == CaptureState.ERROR, timeout=10.0)
        first = fake_capture.instances[0]
        assert first.reads == OpenCVCameraSubsystem.WARMUP_READS
        assert first.released
    finally:
        manager.dispose()


def test_session_keeps_one_frame_in_flight(fake_capture, device_nodes, settings):
    fake_capture.good_reads = 10_000
    subsystem = OpenCVCameraSubsystem(device_glob=str(device_nodes / "video*"), fps=240)
    subsystem.acquire()
    handler = CameraHandler()
    handler.start()
    opened = threading.Event()
    devices = []

    def on_opened(device):
        devices.append(device)
        opened.set()

    sessions = []
    subsystem.open_camera(
        CameraDescriptor(id="0", facing="back", device_path=str(device_nodes / "video0")),
        handler,
        on_opened,
        lambda device: None,
        lambda device, code: None,
    )
    assert opened.wait(5.0)
    devices[0].create_capture_session(JpegImageReader(64, 48, 80), sessions.append, lambda session: None)
    assert handler.drain(5.0)
    session = sessions[0]

    release = threading.Event()
    delivered = []

    def on_image(data):
        delivered.append(data)
        release.wait(5.0)

    try:
        session.set_repeating_request(on_image)
        assert _wait_for(lambda: len(delivered) == 1)
        reads_while_blocked = fake_capture.instances[0].reads
        assert _wait_for(lambda: fake_capture.instances[0].reads > reads_while_blocked + 20)
        assert len(delivered) == 1
        release.set()
        assert _wait_for(lambda: len(delivered) > 1)
    finally:
        release.set()
        session.close()
        devices[0].close()
        handler.quit_safely(5.0)
        subsystem.release()
    assert fake_capture.instances[0].released
