import numpy as np
import pytest

from procam.camera import Camera
from procam.config import RigConfig
from procam.exceptions import CameraError
from procam.operations import FAILURE, SUCCESS, ProCamOperations

CAM_K = np.array([[40.0, 0.0, 16.0], [0.0, 40.0, 12.0], [0.0, 0.0, 1.0]])
PROJ_K = np.array([[50.0, 0.0, 20.0], [0.0, 50.0, 15.0], [0.0, 0.0, 1.0]])
CAM_DIST = np.array([0.01, -0.002, 0.0, 0.0, 0.0]).reshape(5, 1)
PROJ_DIST = np.zeros((5, 1))
# Camera at the world origin, projector 100 units to its right, both facing +Z
CAM_EXT = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
PROJ_EXT = np.array([[0.0, 0.05, 0.0], [-100.0, 0.0, 0.0]])


class FakeCamera(Camera):
    name = "fake"

    def __init__(self, frames=None, fail_on_end=False):
        self.frames = list(frames or [])
        self.fail_on_end = fail_on_end
        self.calls = []
        self.size = (32, 24)

    def initialize(self, config):
        self.size = config.camera_size
        self.calls.append("initialize")

    def start_capture(self):
        self.calls.append("start_capture")

    def query_frame(self):
        self.calls.append("query_frame")
        if self.frames:
            return self.frames.pop(0)
        width, height = self.size
        return np.zeros((height, width, 3), dtype=np.uint8)

    def end_capture(self):
        self.calls.append("end_capture")
        if self.fail_on_end:
            raise CameraError("device vanished")

    def on_exit(self):
        self.calls.append("on_exit")


class FakeProjector:
    def __init__(self):
        self.calls = []

    def open(self):
        self.calls.append("open")

    def show_idle(self):
        self.calls.append("show_idle")

    def close(self):
        self.calls.append("close")


class SimulatedOperations(ProCamOperations):
    # Calibration results are fixed matrices; any operation can be told to fail

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []

    def _status(self, name):
        self.calls.append(name)
        return FAILURE if name in self.fail else SUCCESS

    def run_structured_light(self, context, view_index):
        self.calls.append(("scan", view_index))
        return SUCCESS

    def run_background_capture(self, context, depth_map, color_image, mask):
        status = self._status("background")
        # Partial fill even on failure
        depth_map[0, 0] = 123.0
        if status == SUCCESS:
            depth_map[:] = 500.0
            color_image[:] = 7
            mask[:, : mask.shape[1] // 2] = 0
        return status

    def run_camera_calibration(self, context):
        status = self._status("camera")
        if status == SUCCESS:
            context.calibration.set_camera_intrinsic(CAM_K, CAM_DIST)
        return status

    def run_projector_calibration(self, context, calibrate_camera):
        status = self._status("both" if calibrate_camera else "projector")
        if status == SUCCESS:
            if calibrate_camera:
                context.calibration.set_camera_intrinsic(CAM_K, CAM_DIST)
            context.calibration.set_projector_intrinsic(PROJ_K, PROJ_DIST)
            context.calibration.set_correspondence(np.arange(9.0).reshape(3, 3))
        return status

    def run_procam_extrinsic_calibration(self, context):
        status = self._status("extrinsic")
        if status == SUCCESS:
            context.calibration.set_extrinsic(CAM_EXT, PROJ_EXT)
        return status


@pytest.fixture
def rig_config(tmp_path):
    return RigConfig(
        output_directory=str(tmp_path / "output"),
        object_name="demo",
        camera_width=32,
        camera_height=24,
        projector_width=40,
        projector_height=30,
    )
