"""Device orientation tracking and frame rotation math."""

from threading import Lock

from .logs import log

ORIENTATION_UNKNOWN = -1
ROTATIONS = (0, 90, 180, 270)


def quantize_orientation(reading):
    """Map a raw 0-359 reading to 0/90/180/270; ``None`` for unknown readings."""
    if reading is None or isinstance(reading, bool):
        return None
    try:
        value = int(reading)
    except (TypeError, ValueError):
        return None
    if value == ORIENTATION_UNKNOWN:
        return None
    value %= 360
    if 45 <= value < 135:
        return 90
    if 135 <= value < 225:
        return 180
    if 225 <= value < 315:
        return 270
    return 0


def required_rotation(sensor_orientation, device_orientation, facing):
    """Clockwise rotation that makes a captured frame upright.

    Front cameras are mounted mirrored, so the device rotation is subtracted
    from the sensor rotation instead of added.
    """
    sensor = int(sensor_orientation) % 360
    device = int(device_orientation) % 360
    if facing == "front":
        return (sensor - device + 360) % 360
    return (sensor + device) % 360


class OrientationTracker:
    """Holds the last quantized device orientation reported by a source."""

    def __init__(self, source=None, initial=0):
        self.source = source
        self.lock = Lock()
        self._orientation = quantize_orientation(initial) or 0
        self.enabled = False

    @property
    def orientation(self):
        with self.lock:
            return self._orientation

    def on_reading(self, reading):
        """Feed one raw reading. Returns True when the bucket changed."""
        bucket = quantize_orientation(reading)
        if bucket is None:
            return False
        with self.lock:
            if bucket == self._orientation:
                return False
            self._orientation = bucket
        log(f"[INFO] Device orientation changed to {bucket} (raw {reading})")
        return True

    def enable(self):
        if self.enabled:
            return
        self.enabled = True
        if self.source is not None:
            self.source.enable(self.on_reading)

    def disable(self):
        if not self.enabled:
            return
        self.enabled = False
        if self.source is not None:
            self.source.disable()


class StaticOrientationSource:
    """Orientation source for fixed installs: reports one configured reading."""

    def __init__(self, reading=0):
        self.reading = reading
        self.callback = None

    def enable(self, callback):
        self.callback = callback
        callback(self.reading)

    def disable(self):
        self.callback = None

    def report(self, reading):
        callback = self.callback
        if callback is not None:
            callback(reading)
