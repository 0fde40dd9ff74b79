from securecam.camera import CameraDescriptor, CameraHandler
from securecam.capture import CaptureManager, CaptureState
from securecam.codec import decode_jpeg
from securecam.orientation import StaticOrientationSource

from conftest import FakeCameraSubsystem, MemoryPreferences, make_jpeg


def _drain(manager):
    assert manager._handler.drain(2.0)


def test_start_before_initialize_is_refused(manager, subsystem):
    assert manager.start() is False
    assert manager.state == CaptureState.UNINITIALIZED
    assert subsystem.opened_ids == []


def test_initialize_start_and_go_live(manager, subsystem):
    assert manager.initialize()
    assert manager.is_initialized
    assert manager.state == CaptureState.INITIALIZED

    assert manager.start()
    assert manager.wait_until_ready(2.0)
    assert manager.state == CaptureState.CAMERA_READY
    assert manager.is_camera_ready
    assert not manager.is_streaming

    assert manager.go_live()
    assert manager.state == CaptureState.STREAMING
    assert manager.is_streaming
    assert "m=video" in manager.local_description


def test_go_live_before_ready_is_refused(manager):
    manager.initialize()
    assert manager.go_live() is False
    assert not manager.is_streaming


def test_second_start_while_active_is_refused(manager, subsystem):
    manager.initialize()
    assert manager.start()
    manager.wait_until_ready(2.0)
    assert manager.start() is False
    assert subsystem.opened_ids == ["0"]


def test_default_facing_selects_back_camera(manager, subsystem):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    assert manager.current_camera.id == "0"
    assert manager.current_camera.facing == "back"


def test_saved_preference_wins_over_default_facing(subsystem, settings):
    manager = CaptureManager(
        subsystem=subsystem,
        preferences=MemoryPreferences(selected="1"),
        orientation_source=StaticOrientationSource(0),
        settings=settings,
    )
    try:
        manager.initialize()
        manager.start()
        assert manager.wait_until_ready(2.0)
        assert manager.current_camera.id == "1"
    finally:
        manager.dispose()


def test_duplicate_cameras_are_listed_once(settings):
    cameras = [
        CameraDescriptor(id="0", facing="back"),
        CameraDescriptor(id="0", facing="back", device_path="/dev/video-alias"),
        CameraDescriptor(id="1", facing="front"),
    ]
    manager = CaptureManager(
        subsystem=FakeCameraSubsystem(cameras=cameras),
        preferences=MemoryPreferences(),
        orientation_source=StaticOrientationSource(0),
        settings=settings,
    )
    try:
        manager.initialize()
        listed = manager.list_cameras()
        keys = [(camera.id, camera.facing) for camera in listed]
        assert len(keys) == len(set(keys)) == 2
        assert len(manager.cameras()) == 2
    finally:
        manager.dispose()


def test_no_cameras_leaves_manager_initialized(settings):
    manager = CaptureManager(
        subsystem=FakeCameraSubsystem(cameras=[]),
        preferences=MemoryPreferences(),
        orientation_source=StaticOrientationSource(0),
        settings=settings,
    )
    try:
        assert manager.initialize()
        assert manager.start() is False
        assert manager.state == CaptureState.INITIALIZED
        assert manager.last_error == "No camera found"
    finally:
        manager.dispose()


def test_open_error_enters_error_state_and_blocks_restart(settings):
    subsystem = FakeCameraSubsystem(open_ok=False)
    manager = CaptureManager(
        subsystem=subsystem,
        preferences=MemoryPreferences(),
        orientation_source=StaticOrientationSource(0),
        settings=settings,
    )
    try:
        manager.initialize()
        assert manager.start()
        _drain(manager)
        assert manager.state == CaptureState.ERROR
        assert manager.is_initialized
        assert not manager.is_camera_ready
        assert "error 4" in manager.last_error
        assert manager.start() is False
    finally:
        manager.dispose()


def test_configure_failure_enters_error_state(settings):
    subsystem = FakeCameraSubsystem(configure_ok=False)
    manager = CaptureManager(
        subsystem=subsystem,
        preferences=MemoryPreferences(),
        orientation_source=StaticOrientationSource(0),
        settings=settings,
    )
    try:
        manager.initialize()
        manager.start()
        _drain(manager)
        _drain(manager)
        assert manager.state == CaptureState.ERROR
        assert subsystem.last_device.closed
    finally:
        manager.dispose()


def test_disconnect_enters_error_state(manager, subsystem):
    manager.initialize()
    manager.start()
    assert manager.wait_until_ready(2.0)
    subsystem.last_device.report_disconnected()
    _drain(manager)
    assert manager.state == CaptureState.ERROR
    assert "disconnected" in manager.last_error
    assert subsystem.last_device.closed


def test_stop_then_start_again(manager, subsystem):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    assert manager.stop()
    assert manager.state == CaptureState.STOPPED
    assert not manager.is_camera_ready
    assert manager.stop() is False

    assert manager.start()
    assert manager.wait_until_ready(2.0)
    assert subsystem.opened_ids == ["0", "0"]
    assert subsystem.devices[0].closed


def test_frames_published_after_go_live(manager, subsystem, jpeg):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    manager.go_live()

    assert subsystem.last_session.emit(jpeg)
    _drain(manager)
    frame = manager.frame_store.latest()
    assert frame is not None
    assert frame.sequence == 1
    # Back camera with a 90 degree sensor is rotated upright.
    assert (frame.width, frame.height) == (48, 64)
    decoded = decode_jpeg(frame.data)
    assert decoded.shape[:2] == (64, 48)


def test_stale_session_frames_are_dropped(manager, subsystem, jpeg):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    session = subsystem.last_session
    manager.stop()
    session.on_image(jpeg)
    _drain(manager)
    assert manager.frame_store.latest() is None


def test_undecodable_frame_is_published_unrotated(manager, subsystem):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    garbage = b"not a jpeg at all"
    subsystem.last_session.emit(garbage)
    _drain(manager)
    frame = manager.frame_store.latest()
    assert frame is not None
    assert frame.data == garbage


def test_zero_rotation_passes_bytes_through(settings):
    subsystem = FakeCameraSubsystem(cameras=[CameraDescriptor(id="0", facing="back", sensor_orientation=0)])
    manager = CaptureManager(
        subsystem=subsystem,
        preferences=MemoryPreferences(),
        orientation_source=StaticOrientationSource(0),
        settings=settings,
    )
    try:
        manager.initialize()
        manager.start()
        manager.wait_until_ready(2.0)
        data = make_jpeg()
        subsystem.last_session.emit(data)
        _drain(manager)
        assert manager.frame_store.snapshot() == data
    finally:
        manager.dispose()


def test_orientation_change_updates_rotation(subsystem, settings):
    source = StaticOrientationSource(0)
    manager = CaptureManager(
        subsystem=subsystem,
        preferences=MemoryPreferences(selected="1"),
        orientation_source=source,
        settings=settings,
    )
    try:
        manager.initialize()
        manager.start()
        manager.wait_until_ready(2.0)
        assert manager.required_rotation() == 270
        source.report(92)
        assert manager.required_rotation() == 180
        source.report(-1)
        assert manager.required_rotation() == 180
    finally:
        manager.dispose()


def test_switch_while_streaming_goes_live_again(manager, subsystem, preferences):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    manager.go_live()

    assert manager.switch("1")
    assert manager.wait_until_ready(2.0)
    _drain(manager)
    assert manager.current_camera.id == "1"
    assert manager.is_streaming
    assert preferences.saved == ["1"]


def test_switch_to_unknown_camera_fails(manager):
    manager.initialize()
    assert manager.switch("9") is False
    assert manager.current_camera is None


def test_toggle_facing(manager):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    assert manager.toggle_facing()
    manager.wait_until_ready(2.0)
    assert manager.current_camera.facing == "front"


def test_dispose_twice_is_safe(manager, subsystem):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    manager.go_live()

    manager.dispose()
    manager.dispose()
    assert manager.state == CaptureState.UNINITIALIZED
    assert not manager.is_initialized
    assert not manager.is_camera_ready
    assert not manager.is_streaming
    assert subsystem.release_count == 1
    assert subsystem.last_device.closed
    assert subsystem.last_session.closed


def test_dispose_without_initialize(manager, subsystem):
    manager.dispose()
    assert manager.state == CaptureState.UNINITIALIZED
    assert subsystem.release_count == 0


def test_status_reports_flags(manager):
    manager.initialize()
    manager.start()
    manager.wait_until_ready(2.0)
    status = manager.status()
    assert status["state"] == "camera_ready"
    assert status["initialized"] is True
    assert status["camera_ready"] is True
    assert status["streaming"] is False
    assert status["camera"]["id"] == "0"
    assert status["frames"]["has_frame"] is False


def test_handler_runs_posted_work_in_order():
    handler = CameraHandler("TestHandler")
    handler.start()
    seen = []
    for index in range(50):
        handler.post(seen.append, index)
    assert handler.drain(2.0)
    assert seen == list(range(50))
    handler.quit_safely(2.0)
    assert not handler.is_alive
    assert handler.post(seen.append, 99) is False
