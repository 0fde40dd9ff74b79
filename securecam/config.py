"""Config-backed settings for the camera service.

Settings live in ``config.json`` under nested ``securecam.*`` keys. Missing or
invalid values fall back to defaults, and the normalized values are promoted
back into the file so operators can see every knob.
"""

import json
import os

from .logs import log

CONFIG_ENV_PATH = "SECURECAM_CONFIG"
DEFAULT_CONFIG_PATH = "config.json"

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8080

DEFAULT_CAPTURE_WIDTH = 640
DEFAULT_CAPTURE_HEIGHT = 480
DEFAULT_CAPTURE_FPS = 30
DEFAULT_JPEG_QUALITY = 85
DEFAULT_ROTATED_JPEG_QUALITY = 90
DEFAULT_DEVICE_GLOB = "/dev/video*"
DEFAULT_FACING = "back"

DEFAULT_STREAM_INTERVAL_SECONDS = 0.1
DEFAULT_STREAM_WAIT_SECONDS = 0.5

DEFAULT_WATCHDOG_INTERVAL_SECONDS = 15.0
DEFAULT_WATCHDOG_STALL_TICKS = 2
DEFAULT_SETTLE_SECONDS = 2.0
DEFAULT_START_DELAY_SECONDS = 1.0

DEFAULT_DEVICE_NAME = "SecureCam"
DEFAULT_DEVICE_MODEL = "Network Camera"
DEFAULT_DEVICE_MANUFACTURER = "Open Source"

FACINGS = ("front", "back")

_MISSING = object()


def env_truthy(var_name, default=False):
    value = os.environ.get(var_name)
    if value is None:
        return bool(default)
    normalized = str(value).strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    return bool(default)


def config_path():
    return os.environ.get(CONFIG_ENV_PATH) or DEFAULT_CONFIG_PATH


def _get_nested(data, path, default=_MISSING):
    current = data
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current


def _set_nested(data, path, value):
    current = data
    keys = path.split(".")
    for key in keys[:-1]:
        if key not in current or not isinstance(current[key], dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def _read_config_value(config, path, default=_MISSING, legacy_keys=()):
    value = _get_nested(config, path, _MISSING)
    if value is not _MISSING:
        return value
    for key in legacy_keys:
        if key in config:
            return config[key]
    return default


def _as_bool(value, default=False):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("1", "true", "yes", "on"):
            return True
        if normalized in ("0", "false", "no", "off"):
            return False
    return default


def _as_int(value, default, minimum=None, maximum=None):
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None and parsed < minimum:
        return default
    if maximum is not None and parsed > maximum:
        return default
    return parsed


def _as_float(value, default, minimum=None, maximum=None):
    if isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None and parsed < minimum:
        return default
    if maximum is not None and parsed > maximum:
        return default
    return parsed


def _parse_rotation_degrees(value):
    if isinstance(value, bool):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed in (0, 90, 180, 270) else None


def _parse_facing(value):
    normalized = str(value or "").strip().lower()
    return normalized if normalized in FACINGS else None


def _normalize_rules(value, parser):
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return {}
    if not isinstance(value, dict):
        return {}
    clean = {}
    for key, rule_value in value.items():
        normalized = parser(rule_value)
        if normalized is None:
            continue
        rule_key = str(key or "").strip()
        if not rule_key:
            continue
        clean[rule_key] = normalized
    return clean


def load_config(path=None):
    try:
        with open(path or config_path(), "r", encoding="utf-8") as fp:
            loaded = json.load(fp)
            return loaded if isinstance(loaded, dict) else {}
    except (OSError, json.JSONDecodeError):
        return {}


def save_config(cfg, path=None):
    try:
        with open(path or config_path(), "w", encoding="utf-8") as fp:
            json.dump(cfg, fp, indent=4)
    except OSError as exc:
        log(f"[WARN] Failed to save config: {exc}")


def load_settings(config):
    """Normalize ``config`` into a flat settings dict.

    Returns ``(settings, changed)``; ``changed`` is true when defaults or
    corrected values were written back into ``config``.
    """
    changed = False

    def promote(path, value):
        nonlocal changed
        current = _get_nested(config, path, _MISSING)
        if current is _MISSING or current != value:
            _set_nested(config, path, value)
            changed = True
        return value

    settings = {}

    settings["listen_host"] = promote(
        "securecam.network.listen_host",
        str(
            _read_config_value(
                config,
                "securecam.network.listen_host",
                DEFAULT_LISTEN_HOST,
                legacy_keys=("host", "listen_host"),
            )
        ).strip()
        or DEFAULT_LISTEN_HOST,
    )
    settings["listen_port"] = promote(
        "securecam.network.listen_port",
        _as_int(
            _read_config_value(
                config,
                "securecam.network.listen_port",
                DEFAULT_LISTEN_PORT,
                legacy_keys=("port", "listen_port"),
            ),
            DEFAULT_LISTEN_PORT,
            minimum=1,
            maximum=65535,
        ),
    )

    settings["capture_width"] = promote(
        "securecam.camera.capture_width",
        _as_int(
            _read_config_value(config, "securecam.camera.capture_width", DEFAULT_CAPTURE_WIDTH),
            DEFAULT_CAPTURE_WIDTH,
            minimum=160,
            maximum=3840,
        ),
    )
    settings["capture_height"] = promote(
        "securecam.camera.capture_height",
        _as_int(
            _read_config_value(config, "securecam.camera.capture_height", DEFAULT_CAPTURE_HEIGHT),
            DEFAULT_CAPTURE_HEIGHT,
            minimum=120,
            maximum=2160,
        ),
    )
    settings["capture_fps"] = promote(
        "securecam.camera.capture_fps",
        _as_int(
            _read_config_value(config, "securecam.camera.capture_fps", DEFAULT_CAPTURE_FPS),
            DEFAULT_CAPTURE_FPS,
            minimum=1,
            maximum=240,
        ),
    )
    settings["jpeg_quality"] = promote(
        "securecam.camera.jpeg_quality",
        _as_int(
            _read_config_value(config, "securecam.camera.jpeg_quality", DEFAULT_JPEG_QUALITY),
            DEFAULT_JPEG_QUALITY,
            minimum=10,
            maximum=100,
        ),
    )
    settings["rotated_jpeg_quality"] = promote(
        "securecam.camera.rotated_jpeg_quality",
        _as_int(
            _read_config_value(
                config,
                "securecam.camera.rotated_jpeg_quality",
                DEFAULT_ROTATED_JPEG_QUALITY,
            ),
            DEFAULT_ROTATED_JPEG_QUALITY,
            minimum=10,
            maximum=100,
        ),
    )
    settings["device_glob"] = promote(
        "securecam.camera.device_glob",
        str(_read_config_value(config, "securecam.camera.device_glob", DEFAULT_DEVICE_GLOB)).strip()
        or DEFAULT_DEVICE_GLOB,
    )
    settings["facing_rules"] = promote(
        "securecam.camera.facing",
        _normalize_rules(_read_config_value(config, "securecam.camera.facing", {}), _parse_facing),
    )
    settings["sensor_orientation_rules"] = promote(
        "securecam.camera.sensor_orientation",
        _normalize_rules(
            _read_config_value(config, "securecam.camera.sensor_orientation", {}),
            _parse_rotation_degrees,
        ),
    )

    selected = _read_config_value(config, "securecam.camera.selected_camera_id", None)
    settings["selected_camera_id"] = promote(
        "securecam.camera.selected_camera_id",
        str(selected).strip() or None if selected is not None else None,
    )
    settings["default_facing"] = promote(
        "securecam.camera.default_facing",
        _parse_facing(_read_config_value(config, "securecam.camera.default_facing", DEFAULT_FACING))
        or DEFAULT_FACING,
    )
    device_orientation = _read_config_value(config, "securecam.camera.device_orientation", 0)
    settings["device_orientation"] = promote(
        "securecam.camera.device_orientation",
        _as_int(device_orientation, 0, minimum=0, maximum=359),
    )

    settings["stream_interval"] = promote(
        "securecam.stream.interval_seconds",
        _as_float(
            _read_config_value(
                config,
                "securecam.stream.interval_seconds",
                DEFAULT_STREAM_INTERVAL_SECONDS,
            ),
            DEFAULT_STREAM_INTERVAL_SECONDS,
            minimum=0.0,
            maximum=10.0,
        ),
    )
    settings["stream_wait"] = promote(
        "securecam.stream.wait_seconds",
        _as_float(
            _read_config_value(config, "securecam.stream.wait_seconds", DEFAULT_STREAM_WAIT_SECONDS),
            DEFAULT_STREAM_WAIT_SECONDS,
            minimum=0.0,
            maximum=30.0,
        ),
    )

    settings["watchdog_interval"] = promote(
        "securecam.watchdog.interval_seconds",
        _as_float(
            _read_config_value(
                config,
                "securecam.watchdog.interval_seconds",
                DEFAULT_WATCHDOG_INTERVAL_SECONDS,
            ),
            DEFAULT_WATCHDOG_INTERVAL_SECONDS,
            minimum=0.1,
            maximum=3600.0,
        ),
    )
    settings["watchdog_stall_ticks"] = promote(
        "securecam.watchdog.stall_ticks",
        _as_int(
            _read_config_value(config, "securecam.watchdog.stall_ticks", DEFAULT_WATCHDOG_STALL_TICKS),
            DEFAULT_WATCHDOG_STALL_TICKS,
            minimum=1,
            maximum=100,
        ),
    )
    settings["settle_seconds"] = promote(
        "securecam.watchdog.settle_seconds",
        _as_float(
            _read_config_value(config, "securecam.watchdog.settle_seconds", DEFAULT_SETTLE_SECONDS),
            DEFAULT_SETTLE_SECONDS,
            minimum=0.0,
            maximum=60.0,
        ),
    )
    settings["start_delay"] = promote(
        "securecam.watchdog.start_delay_seconds",
        _as_float(
            _read_config_value(
                config,
                "securecam.watchdog.start_delay_seconds",
                DEFAULT_START_DELAY_SECONDS,
            ),
            DEFAULT_START_DELAY_SECONDS,
            minimum=0.0,
            maximum=60.0,
        ),
    )

    settings["device_name"] = promote(
        "securecam.device.name",
        str(_read_config_value(config, "securecam.device.name", DEFAULT_DEVICE_NAME)).strip()
        or DEFAULT_DEVICE_NAME,
    )
    settings["device_model"] = promote(
        "securecam.device.model",
        str(_read_config_value(config, "securecam.device.model", DEFAULT_DEVICE_MODEL)).strip()
        or DEFAULT_DEVICE_MODEL,
    )
    settings["device_manufacturer"] = promote(
        "securecam.device.manufacturer",
        str(
            _read_config_value(
                config,
                "securecam.device.manufacturer",
                DEFAULT_DEVICE_MANUFACTURER,
            )
        ).strip()
        or DEFAULT_DEVICE_MANUFACTURER,
    )

    return settings, changed


def default_settings():
    settings, _ = load_settings({})
    return settings
