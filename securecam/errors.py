class SecureCamError(Exception):
    """Base class for securecam failures."""


class CameraUnavailableError(SecureCamError):
    """The camera subsystem or a device could not be acquired."""


class FrameCodecError(SecureCamError):
    """A still frame could not be decoded, rotated or re-encoded."""


class SignalingError(SecureCamError):
    """A peer session description could not be parsed."""
