import os
import logging
import tempfile
import threading

import cv2

from procam.exceptions import CameraError
from procam.server import CaptureState, create_app, make_server, monitor_disconnect

logger = logging.getLogger(__name__)


class Camera:
    """Frame source shared by every scan and calibration operation.

    Backends implement :meth:`initialize`, :meth:`start_capture`,
    :meth:`query_frame` and :meth:`end_capture`; failures raise
    :class:`CameraError`. Frames are BGR ``uint8`` arrays.
    """

    name = "camera"

    def initialize(self, config):
        raise NotImplementedError

    def start_capture(self):
        raise NotImplementedError

    def query_frame(self):
        raise NotImplementedError

    def end_capture(self):
        raise NotImplementedError

    def on_exit(self):
        # Device-specific side effect run when the user exits the session
        pass


class OpenCVCamera(Camera):
    # Any capture device reachable through cv2.VideoCapture
    name = "opencv"

    def __init__(self):
        self.capture = None
        self.device = 0
        self.size = None
        self.frame_delay_ms = 0

    def initialize(self, config):
        self.device = config.camera_device
        self.size = config.camera_size
        self.frame_delay_ms = config.camera_frame_delay_ms

    def start_capture(self):
        self.capture = cv2.VideoCapture(self.device)
        if not self.capture.isOpened():
            self.capture = None
            raise CameraError(f"Cannot open OpenCV capture device {self.device}")
        width, height = self.size
        self.capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

    def query_frame(self):
        if self.capture is None:
            raise CameraError("Capture has not been started")
        # Let the projector settle before grabbing the frame we keep
        if self.frame_delay_ms > 0:
            cv2.waitKey(self.frame_delay_ms)
        ok, frame = self.capture.read()
        if not ok or frame is None:
            raise CameraError("No frame was available")
        # Devices may ignore the requested size; the rest of the rig relies on it
        width, height = self.size
        if frame.shape[1] != width or frame.shape[0] != height:
            frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
        return frame

    def end_capture(self):
        if self.capture is not None:
            self.capture.release()
            self.capture = None


class PhoneCamera(Camera):
    # A phone that polls an HTTP server for capture commands and uploads the picture
    name = "phone"

    def __init__(self):
        self.state = CaptureState()
        self.app = create_app(self.state)
        self.stop_event = threading.Event()
        self.host = None
        self.port = None
        self.timeout = None
        self.size = None
        self.spool_dir = None
        self.server = None
        self.frame_index = 0

    def initialize(self, config):
        self.host = config.phone_host
        self.port = config.phone_port
        self.timeout = config.phone_timeout
        self.size = config.camera_size

    def start_capture(self):
        # Uploaded pictures are spooled to disk before they are decoded
        self.spool_dir = tempfile.mkdtemp(prefix="procam_phone_")
        try:
            self.server = make_server(self.app, self.host, self.port)
        # werkzeug reports a failed bind by exiting rather than raising
        except (OSError, SystemExit) as e:
            os.rmdir(self.spool_dir)
            self.spool_dir = None
            raise CameraError(f"Cannot start phone capture server on {self.host}:{self.port}: {e}") from e
        self.stop_event.clear()
        threading.Thread(target=self.server.serve_forever, daemon=True).start()
        threading.Thread(
            target=monitor_disconnect, args=(self.state, self.stop_event), daemon=True
        ).start()
        logger.info("Phone capture server listening on %s:%d", self.host, self.port)

    def query_frame(self):
        if self.spool_dir is None:
            raise CameraError("Capture has not been started")
        self.frame_index += 1
        path = os.path.join(self.spool_dir, f"frame_{self.frame_index:05d}.png")

        self.state.request_capture(path)
        if not self.state.wait_for_upload(self.timeout):
            raise CameraError(f"Timeout waiting for the phone to upload {os.path.basename(path)}")

        frame = cv2.imread(path, cv2.IMREAD_COLOR)
        os.remove(path)
        if frame is None:
            raise CameraError("Phone uploaded an unreadable image")
        width, height = self.size
        if frame.shape[1] != width or frame.shape[0] != height:
            frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
        return frame

    def end_capture(self):
        self.stop_event.set()
        if self.server is not None:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
        if self.spool_dir is not None:
            try:
                os.rmdir(self.spool_dir)
            except OSError as e:
                raise CameraError(f"Cannot remove phone spool directory: {e}") from e
            self.spool_dir = None


CAMERA_BACKENDS = {
    OpenCVCamera.name: OpenCVCamera,
    PhoneCamera.name: PhoneCamera,
}


def create_camera(config):
    # Pick the backend named in the configuration and initialise it
    try:
        backend = CAMERA_BACKENDS[config.camera_backend]
    except KeyError:
        raise CameraError(
            f"Unknown camera backend \"{config.camera_backend}\" "
            f"(expected one of: {', '.join(sorted(CAMERA_BACKENDS))})"
        ) from None
    camera = backend()
    camera.initialize(config)
    return camera
