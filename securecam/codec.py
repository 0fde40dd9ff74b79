import cv2
import numpy as np

from .errors import FrameCodecError
from .orientation import ROTATIONS

_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def encode_jpeg(image, quality):
    if image is None:
        raise FrameCodecError("No image to encode")
    if len(image.shape) == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    try:
        ok, encoded = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    except cv2.error as exc:
        raise FrameCodecError(f"JPEG encode failed: {exc}") from exc
    if not ok:
        raise FrameCodecError("JPEG encode failed")
    return encoded.tobytes()


def decode_jpeg(data):
    if not data:
        raise FrameCodecError("Empty JPEG payload")
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise FrameCodecError(f"Could not decode {len(data)} byte JPEG")
    return image


def rotate_image(image, rotation):
    if rotation not in ROTATIONS:
        raise FrameCodecError(f"Unsupported rotation {rotation}")
    if rotation == 0:
        return image
    return cv2.rotate(image, _ROTATE_CODES[rotation])


def rotate_jpeg(data, rotation, quality):
    """Decode, rotate clockwise by ``rotation`` and re-encode.

    Returns ``(jpeg_bytes, width, height)`` of the rotated frame.
    """
    try:
        image = rotate_image(decode_jpeg(data), rotation)
    except cv2.error as exc:
        raise FrameCodecError(f"Rotation failed: {exc}") from exc
    height, width = image.shape[:2]
    return encode_jpeg(image, quality), int(width), int(height)
