"""Network camera service: MJPEG/snapshot HTTP endpoints backed by a local camera."""

__version__ = "0.1.0"
