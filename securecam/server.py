import threading
import time
from threading import Lock

from flask import Flask, Response, jsonify, render_template_string, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.serving import make_server

from . import signaling
from .config import default_settings
from .logs import log
from .network import server_url
from .pages import HOME_ASSISTANT_HTML, INDEX_HTML

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Accel-Buffering": "no",
}


def _error(message, status):
    return jsonify({"status": "error", "message": message}), status


def mjpeg_part(jpeg):
    header = (
        b"--frame\r\n"
        b"Content-Type: image/jpeg\r\n"
        + f"Content-Length: {len(jpeg)}\r\n\r\n".encode("ascii")
    )
    return header + jpeg + b"\r\n"


def mjpeg_stream(http_server):
    """Yield the latest frame as multipart parts until the client goes away."""
    interval = float(http_server.settings["stream_interval"])
    wait = float(http_server.settings["stream_wait"])
    store = http_server.frame_store
    if store is not None:
        store.acquire_client()
    try:
        while http_server.is_serving:
            current = http_server.frame_store
            if current is None:
                time.sleep(wait)
                continue
            # Re-send the latest frame each interval; block only while none exists.
            frame = current.wait_for_frame(timeout=wait)
            if frame is None:
                continue
            yield mjpeg_part(frame.data)
            time.sleep(interval)
    finally:
        if store is not None:
            store.release_client()


def _start_camera_async(manager, settle_seconds):
    def worker():
        if not manager.is_initialized:
            log("[WARN] Start requested but capture manager is not initialized")
            return
        manager.start()
        if manager.wait_until_ready(settle_seconds):
            manager.go_live()
        else:
            log("[WARN] Camera not ready after start request; watchdog will retry")

    threading.Thread(target=worker, name="StartCamera", daemon=True).start()


def create_app(http_server):
    app = Flask(__name__)
    CORS(
        app,
        resources={r"/*": {"origins": "*"}},
        methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.before_request
    def _count_requests():
        with http_server.stats_lock:
            http_server.request_count += 1

    @app.route("/")
    @app.route("/index.html")
    def index():
        return render_template_string(INDEX_HTML, device_name=http_server.settings["device_name"])

    @app.route("/status", methods=["GET"])
    def status():
        manager = http_server.capture_manager
        store = http_server.frame_store
        with http_server.stats_lock:
            served = http_server.request_count
        return jsonify(
            {
                "status": "ok",
                "message": "Camera service running",
                "timestamp": int(time.time() * 1000),
                "video_ready": bool(manager is not None and manager.is_initialized),
                "camera_ready": bool(manager is not None and manager.is_camera_ready),
                "streaming": bool(manager is not None and manager.is_streaming),
                "uptime_seconds": round(time.time() - http_server.started_at, 2),
                "requests_served": served,
                "frame": store.status() if store is not None else None,
            }
        )

    @app.route("/start-camera", methods=["POST"])
    def start_camera():
        manager = http_server.capture_manager
        if manager is None:
            return jsonify({"status": "error", "message": "Capture manager not available"})
        _start_camera_async(manager, http_server.settings["settle_seconds"])
        return jsonify({"status": "success", "message": "Camera start requested"})

    @app.route("/offer", methods=["POST"])
    def offer():
        payload = request.get_json(silent=True)
        offer_sdp = payload.get("sdp") if isinstance(payload, dict) else None
        try:
            answer = signaling.answer_for(offer_sdp)
        except Exception as exc:
            log(f"[WARN] Answer synthesis failed: {exc}")
            answer = signaling.default_description()
        return jsonify({"type": "answer", "sdp": answer})

    @app.route("/ice-candidate", methods=["POST"])
    def ice_candidate():
        return jsonify({"type": "success", "message": "ICE candidate received"})

    @app.route("/snapshot", methods=["GET"])
    def snapshot():
        store = http_server.frame_store
        jpeg = store.snapshot() if store is not None else None
        if not jpeg:
            return _error("No camera frame available", 404)
        return Response(jpeg, mimetype="image/jpeg", headers=NO_CACHE_HEADERS)

    @app.route("/stream", methods=["GET"])
    def stream():
        return Response(
            mjpeg_stream(http_server),
            mimetype="multipart/x-mixed-replace; boundary=frame",
            headers=NO_CACHE_HEADERS,
        )

    @app.route("/camera-info", methods=["GET"])
    def camera_info():
        manager = http_server.capture_manager
        base = http_server.server_url
        camera = manager.current_camera if manager is not None else None
        return jsonify(
            {
                "name": http_server.settings["device_name"],
                "model": http_server.settings["device_model"],
                "manufacturer": http_server.settings["device_manufacturer"],
                "camera_ready": bool(manager is not None and manager.is_camera_ready),
                "streaming": bool(manager is not None and manager.is_streaming),
                "frame_width": manager.frame_width if manager is not None else http_server.settings["capture_width"],
                "frame_height": manager.frame_height if manager is not None else http_server.settings["capture_height"],
                "camera": camera.as_dict() if camera is not None else None,
                "cameras": [item.as_dict() for item in manager.cameras()] if manager is not None else [],
                "snapshot_url": f"{base}/snapshot",
                "stream_url": f"{base}/stream",
            }
        )

    @app.route("/home-assistant", methods=["GET"])
    def home_assistant():
        base = http_server.server_url
        return render_template_string(
            HOME_ASSISTANT_HTML,
            device_name=http_server.settings["device_name"],
            snapshot_url=f"{base}/snapshot",
            stream_url=f"{base}/stream",
        )

    @app.errorhandler(404)
    @app.errorhandler(405)
    def not_found(_exc):
        return _error("Endpoint not found", 404)

    @app.errorhandler(500)
    def internal_error(exc):
        return _error(str(getattr(exc, "description", exc)) or "Internal server error", 500)

    @app.errorhandler(Exception)
    def unhandled(exc):
        if isinstance(exc, HTTPException):
            return exc
        log(f"[ERROR] Unhandled error on {request.method} {request.path}: {exc}")
        return _error(str(exc) or "Internal server error", 500)

    return app


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------
class CameraHttpServer:
    """Threaded werkzeug server around the camera Flask app."""

    def __init__(self, capture_manager=None, settings=None, host=None, port=None):
        self.settings = dict(settings or default_settings())
        self.host = host if host is not None else self.settings["listen_host"]
        self._port = int(port if port is not None else self.settings["listen_port"])
        self._lock = Lock()
        self._capture_manager = capture_manager
        self._server = None
        self._thread = None
        self._running = threading.Event()

        self.stats_lock = Lock()
        self.request_count = 0
        self.started_at = time.time()
        self.app = create_app(self)

    @property
    def capture_manager(self):
        with self._lock:
            return self._capture_manager

    def set_capture_manager(self, capture_manager):
        with self._lock:
            self._capture_manager = capture_manager

    @property
    def frame_store(self):
        manager = self.capture_manager
        return manager.frame_store if manager is not None else None

    @property
    def port(self):
        return self._port

    @property
    def server_url(self):
        return server_url(self.host, self._port)

    @property
    def is_running(self):
        thread = self._thread
        return self._running.is_set() and thread is not None and thread.is_alive()

    @property
    def is_serving(self):
        # Streams end once a started server is stopped; an app mounted elsewhere streams until the client leaves.
        return self._thread is None or self._running.is_set()

    def start(self):
        with self._lock:
            if self._server is not None:
                return True
            try:
                server = make_server(self.host, self._port, self.app, threaded=True)
            except (OSError, SystemExit) as exc:
                # werkzeug reports bind errors with sys.exit(1).
                log(f"[ERROR] Failed to bind {self.host}:{self._port}: {exc}")
                return False
            self._server = server
            self._port = server.server_port
            self._running.set()
            self.started_at = time.time()
            self._thread = threading.Thread(target=server.serve_forever, name="HttpServer", daemon=True)
            self._thread.start()
        log(f"[OK] HTTP server listening on {self.server_url}")
        return True

    def stop(self):
        with self._lock:
            server, self._server = self._server, None
            thread = self._thread
            self._running.clear()
        if server is None:
            return
        try:
            server.shutdown()
        finally:
            server.server_close()
        if thread is not None:
            thread.join(timeout=2.0)
        log("[INFO] HTTP server stopped")
