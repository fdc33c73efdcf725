import os
import time
import uuid
import logging
import threading

from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug import serving

logger = logging.getLogger(__name__)

# Seconds without a poll before the phone is considered gone
DISCONNECT_AFTER = 5.0


class CaptureState:
    # Shared state between the capture thread and the HTTP handlers
    def __init__(self):
        self.command = "idle"                          # Current command for the phone (idle, capture)
        self.command_id = ""                           # Unique id so the phone never runs a command twice
        self.image_path = None                         # Where the next uploaded picture is stored
        self.upload_received = threading.Event()       # Set once that picture has arrived
        self.last_seen = 0.0                           # Time of the latest poll
        self.connected = False
        self.lock = threading.Lock()

    def request_capture(self, save_path):
        # Publish a new capture command and arm the upload event
        with self.lock:
            self.upload_received.clear()
            self.image_path = save_path
            self.command_id = str(uuid.uuid4())
            self.command = "capture"

    def finish_capture(self):
        with self.lock:
            self.command = "idle"

    def wait_for_upload(self, timeout):
        received = self.upload_received.wait(timeout=timeout)
        self.finish_capture()
        return received

    def check_disconnect(self, now=None):
        now = time.time() if now is None else now
        if self.connected and now - self.last_seen > DISCONNECT_AFTER:
            logger.info("Phone disconnected")
            self.connected = False
        return self.connected


def create_app(state):
    # Flask application the phone polls for commands and uploads pictures to
    app = Flask(__name__)
    # Allow the phone app to reach the API from another origin
    CORS(app)

    @app.route("/poll_command", methods=["GET"])
    def poll_command():
        now = time.time()
        # A gap longer than the disconnect window means a new connection
        if now - state.last_seen > DISCONNECT_AFTER:
            logger.info("Phone connected (IP: %s)", request.remote_addr)
            state.connected = True
        state.last_seen = now

        with state.lock:
            return jsonify({"action": state.command, "id": state.command_id})

    @app.route("/upload", methods=["POST"])
    def upload_file():
        if "file" not in request.files:
            return "No file", 400
        file = request.files["file"]
        if file.filename == "":
            return "No filename", 400

        with state.lock:
            path = state.image_path
        if not path:
            return "No capture pending", 409

        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        file.save(path)
        logger.debug("Saved upload to %s", path)
        state.upload_received.set()
        return "Success", 200

    return app


def monitor_disconnect(state, stop_event, interval=2.0):
    # Background loop flagging a phone that stopped polling
    while not stop_event.wait(interval):
        state.check_disconnect()


def make_server(app, host, port):
    """Bind the capture server in the calling thread.

    A port that cannot be bound raises ``OSError`` (or ``SystemExit`` from
    werkzeug); the returned server is started with ``serve_forever`` on a worker thread.
    """
    # Keep werkzeug request logs out of the console
    logging.getLogger("werkzeug").setLevel(logging.ERROR)
    return serving.make_server(host, port, app, threaded=True)
