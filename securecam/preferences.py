from threading import Lock

from .config import (
    DEFAULT_FACING,
    _get_nested,
    _parse_facing,
    _set_nested,
    load_config,
    save_config,
)
from .logs import log

SELECTED_CAMERA_PATH = "securecam.camera.selected_camera_id"
DEFAULT_FACING_PATH = "securecam.camera.default_facing"


class ConfigPreferenceStore:
    """Camera selection preferences persisted in ``config.json``."""

    def __init__(self, path=None):
        self.path = path
        self.lock = Lock()

    def get_selected_camera_id(self):
        value = _get_nested(load_config(self.path), SELECTED_CAMERA_PATH, None)
        if value is None:
            return None
        return str(value).strip() or None

    def get_default_facing(self):
        value = _get_nested(load_config(self.path), DEFAULT_FACING_PATH, DEFAULT_FACING)
        return _parse_facing(value) or DEFAULT_FACING

    def save_selected_camera(self, camera_id):
        with self.lock:
            config = load_config(self.path)
            _set_nested(config, SELECTED_CAMERA_PATH, str(camera_id))
            save_config(config, self.path)
        log(f"[INFO] Saved camera preference: {camera_id}")

    def clear_selected_camera(self):
        with self.lock:
            config = load_config(self.path)
            _set_nested(config, SELECTED_CAMERA_PATH, None)
            save_config(config, self.path)
        log("[INFO] Cleared camera selection; default facing applies")

    def save_default_facing(self, facing):
        normalized = _parse_facing(facing)
        if normalized is None:
            raise ValueError("facing must be 'front' or 'back'")
        with self.lock:
            config = load_config(self.path)
            _set_nested(config, DEFAULT_FACING_PATH, normalized)
            save_config(config, self.path)
        log(f"[INFO] Saved default camera facing: {normalized}")
        return normalized
