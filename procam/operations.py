"""Scan and calibration operations the session dispatches to.

Operations receive the :class:`~procam.session.SessionContext` by reference,
block until done and return a completion status (0 on success). They may
update the calibration store only through its setters, which keep the flag
lattice consistent whatever the outcome.
"""
import os
import logging
import importlib

import cv2
import numpy as np

logger = logging.getLogger(__name__)

SUCCESS = 0
FAILURE = 1
UNSUPPORTED = 2


class ProCamOperations:
    # Default collaborator: every operation is unavailable until overridden

    def run_structured_light(self, context, view_index):
        return self._unsupported("structured-light scanning")

    def run_background_capture(self, context, depth_map, color_image, mask):
        return self._unsupported("background capture")

    def run_camera_calibration(self, context):
        return self._unsupported("camera calibration")

    def run_projector_calibration(self, context, calibrate_camera):
        return self._unsupported("projector calibration")

    def run_procam_extrinsic_calibration(self, context):
        return self._unsupported("projector-camera alignment")

    def _unsupported(self, what):
        logger.warning("%s is not available with %s", what.capitalize(), type(self).__name__)
        return UNSUPPORTED


class CheckerboardOperations(ProCamOperations):
    # Camera intrinsic calibration from checkerboard views, using OpenCV

    # Corner refinement stop criteria
    CRITERIA = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.001)
    # Frames grabbed per pose before giving up on finding the board
    ATTEMPTS_PER_POSE = 5

    def board_points(self, config):
        # Exact 3D coordinates of the inner corners on the board plane (Z = 0)
        rows, cols = config.board_rows, config.board_cols
        objp = np.zeros((rows * cols, 3), np.float32)
        objp[:, :2] = np.mgrid[0:rows, 0:cols].T.reshape(-1, 2)
        return objp * config.square_size

    def find_corners(self, frame, pattern_size):
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
        # Equalise shadows so the board is found under uneven projector light
        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        enhanced = clahe.apply(cv2.GaussianBlur(gray, (5, 5), 0))

        found, corners = cv2.findChessboardCorners(enhanced, pattern_size, None)
        if not found:
            return None
        return cv2.cornerSubPix(gray, corners, (11, 11), (-1, -1), self.CRITERIA)

    def run_camera_calibration(self, context):
        config = context.config
        pattern_size = (config.board_rows, config.board_cols)
        objp = self.board_points(config)
        save_dir = os.path.join(context.output_dir, "calib", "cam")
        os.makedirs(save_dir, exist_ok=True)

        obj_pts, img_pts = [], []
        for pose in range(1, config.num_board_images + 1):
            context.projector.show_idle()
            context.commands.acknowledge(
                f"Pose {pose}/{config.num_board_images}: move the board, then press any key."
            )

            corners = None
            for _ in range(self.ATTEMPTS_PER_POSE):
                frame = context.camera.query_frame()
                corners = self.find_corners(frame, pattern_size)
                if corners is not None:
                    break
            if corners is None:
                logger.error("Checkerboard not found for pose %d; camera calibration aborted", pose)
                return FAILURE

            cv2.imwrite(os.path.join(save_dir, f"{pose:02d}.png"), frame)
            obj_pts.append(objp)
            img_pts.append(corners)

        height, width = frame.shape[:2]
        rms, K, dist, _, _ = cv2.calibrateCamera(obj_pts, img_pts, (width, height), None, None)
        logger.info("Camera calibration reprojection error: %.4f px", rms)

        context.calibration.set_camera_intrinsic(K, np.asarray(dist).reshape(-1)[:5])
        context.calibration.persist_all(context.output_dir)
        return SUCCESS


def load_operations(target):
    """Instantiate an operations class given as ``"package.module:ClassName"``."""
    module_name, _, class_name = target.partition(":")
    if not module_name or not class_name:
        raise ValueError(f"Operations must be given as module:Class, got \"{target}\"")
    module = importlib.import_module(module_name)
    cls = getattr(module, class_name)
    return cls()
