import os
import logging
from dataclasses import dataclass, asdict

import cv2

from procam.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# ==========================================
# CONFIGURATION
# ==========================================

# --- Folder Structure ---
# Configuration file read at startup and written back on exit
DEFAULT_CONFIG_FILE = os.path.join(".", "config.xml")
# Root folder for calibration data and scans
DEFAULT_OUTPUT_DIR = os.path.join(".", "output")
# Sub-folder (cleared at startup) holding the scans of the current object
DEFAULT_OBJECT_NAME = "object_01"

# --- Camera Settings ---
# Backend used to grab frames ("opencv" or "phone")
CAMERA_BACKEND = "opencv"
# OpenCV device index (ignored by the phone backend)
CAMERA_DEVICE = 0
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480
# Frames grabbed and dropped after every projector change
CAMERA_FRAME_DELAY_MS = 100

# --- Projector Settings ---
# Projector resolution
SCREEN_WIDTH = 1024
SCREEN_HEIGHT = 768
# Desktop position of the projector (starting right of a 1920 px primary monitor)
SCREEN_OFFSET_X = 1920
SCREEN_OFFSET_Y = 0
# Grey level of the neutral pattern shown while idle (0-255)
IDLE_VALUE = 255

# --- Checkerboard Settings ---
# Number of inner corner grid points
CHECKER_ROWS = 7
CHECKER_COLS = 7
# Size of squares in the checkerboard (in millimeters)
SQUARE_SIZE = 35.0
# Number of board views used for camera calibration
NUM_BOARD_IMAGES = 10

# --- Scanning Settings ---
# Minimum depth gap (mm) between a point and the background to count as foreground
BACKGROUND_DEPTH_THRESH = 20.0

# --- Phone Camera Server ---
PHONE_HOST = "0.0.0.0"
PHONE_PORT = 5000
# Seconds to wait for the phone to upload a picture
PHONE_TIMEOUT = 20.0


@dataclass
class RigConfig:
    """Fixed rig parameters consumed once before the command loop starts."""

    output_directory: str = DEFAULT_OUTPUT_DIR
    object_name: str = DEFAULT_OBJECT_NAME
    camera_backend: str = CAMERA_BACKEND
    camera_device: int = CAMERA_DEVICE
    camera_width: int = CAMERA_WIDTH
    camera_height: int = CAMERA_HEIGHT
    camera_frame_delay_ms: int = CAMERA_FRAME_DELAY_MS
    projector_width: int = SCREEN_WIDTH
    projector_height: int = SCREEN_HEIGHT
    projector_offset_x: int = SCREEN_OFFSET_X
    projector_offset_y: int = SCREEN_OFFSET_Y
    projector_idle_value: int = IDLE_VALUE
    board_rows: int = CHECKER_ROWS
    board_cols: int = CHECKER_COLS
    square_size: float = SQUARE_SIZE
    num_board_images: int = NUM_BOARD_IMAGES
    background_depth_thresh: float = BACKGROUND_DEPTH_THRESH
    phone_host: str = PHONE_HOST
    phone_port: int = PHONE_PORT
    phone_timeout: float = PHONE_TIMEOUT

    @property
    def camera_size(self):
        return self.camera_width, self.camera_height

    @property
    def projector_size(self):
        return self.projector_width, self.projector_height

    @property
    def object_directory(self):
        return os.path.join(self.output_directory, self.object_name)

    def validate(self):
        # Every image buffer is allocated from these, so they must be usable sizes
        for name in ("camera_width", "camera_height", "projector_width", "projector_height"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0")
        if self.num_board_images < 1:
            raise ConfigurationError("num_board_images must be >= 1")
        if not 0 <= self.projector_idle_value <= 255:
            raise ConfigurationError("projector idle_value must be within 0-255")
        return self


# Config file layout: (section, node) -> RigConfig field
_LAYOUT = {
    ("output", "output_directory"): "output_directory",
    ("output", "object_name"): "object_name",
    ("camera", "backend"): "camera_backend",
    ("camera", "device"): "camera_device",
    ("camera", "width"): "camera_width",
    ("camera", "height"): "camera_height",
    ("camera", "frame_delay_ms"): "camera_frame_delay_ms",
    ("projector", "width"): "projector_width",
    ("projector", "height"): "projector_height",
    ("projector", "offset_x"): "projector_offset_x",
    ("projector", "offset_y"): "projector_offset_y",
    ("projector", "idle_value"): "projector_idle_value",
    ("calibration", "board_rows"): "board_rows",
    ("calibration", "board_cols"): "board_cols",
    ("calibration", "square_size"): "square_size",
    ("calibration", "num_board_images"): "num_board_images",
    ("scanning", "background_depth_thresh"): "background_depth_thresh",
    ("phone", "host"): "phone_host",
    ("phone", "port"): "phone_port",
    ("phone", "timeout"): "phone_timeout",
}


def _read_node(node, default):
    # Convert an OpenCV FileNode to the type of the default value
    if isinstance(default, str):
        return node.string()
    if isinstance(default, int):
        return int(node.real())
    return float(node.real())


def load_config(path=DEFAULT_CONFIG_FILE):
    # Read the rig configuration (XML or YAML) with OpenCV's FileStorage
    if not os.path.isfile(path):
        raise ConfigurationError(f"Could not open configuration file \"{path}\"")

    try:
        fs = cv2.FileStorage(path, cv2.FILE_STORAGE_READ)
    except cv2.error as e:
        raise ConfigurationError(f"Could not parse configuration file \"{path}\": {e}") from e
    if not fs.isOpened():
        raise ConfigurationError(f"Could not parse configuration file \"{path}\"")

    logger.info("Reading configuration file \"%s\"...", path)
    config = RigConfig()
    try:
        for (section, key), field in _LAYOUT.items():
            node = fs.getNode(section).getNode(key)
            if node.empty():
                continue
            setattr(config, field, _read_node(node, getattr(config, field)))
    finally:
        fs.release()

    return config.validate()


def save_config(path, config):
    # Write the configuration back using the same section layout
    fs = cv2.FileStorage(path, cv2.FILE_STORAGE_WRITE)
    if not fs.isOpened():
        raise OSError(f"Cannot write configuration file \"{path}\"")

    values = asdict(config)
    try:
        section = None
        for (sec, key), field in _LAYOUT.items():
            if sec != section:
                if section is not None:
                    fs.endWriteStruct()
                fs.startWriteStruct(sec, cv2.FileNode_MAP)
                section = sec
            fs.write(key, values[field])
        fs.endWriteStruct()
    finally:
        fs.release()
