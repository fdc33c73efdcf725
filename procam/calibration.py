"""Calibration parameters of the projector-camera rig and their persistence.

Three flags form a dependency lattice: the camera and projector intrinsic
groups are independent, and the extrinsic group requires both of them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from procam import persistence
from procam.exceptions import CalibrationStateError
from procam.geometry import evaluate_procam_geometry

logger = logging.getLogger(__name__)

# Persisted artifact groups: (artifact, shape) pairs loaded all-or-nothing
CAM_INTRINSIC_GROUP = ((persistence.CAM_INTRINSIC, (3, 3)), (persistence.CAM_DISTORTION, (5, 1)))
CORRESPONDENCE_GROUP = ((persistence.FUNDAMENTAL_MATRIX, (3, 3)),)
PROJ_INTRINSIC_GROUP = ((persistence.PROJ_INTRINSIC, (3, 3)), (persistence.PROJ_DISTORTION, (5, 1)))
EXTRINSIC_GROUP = ((persistence.CAM_EXTRINSIC, (2, 3)), (persistence.PROJ_EXTRINSIC, (2, 3)))


def _zeros(*shape):
    return field(default_factory=lambda: np.zeros(shape, dtype=np.float64))


def _eye():
    return field(default_factory=lambda: np.eye(3, dtype=np.float64))


@dataclass
class CalibrationParameters:
    cam_intrinsic: np.ndarray = _eye()
    cam_distortion: np.ndarray = _zeros(5, 1)
    cam_extrinsic: np.ndarray = _zeros(2, 3)
    proj_intrinsic: np.ndarray = _eye()
    proj_distortion: np.ndarray = _zeros(5, 1)
    proj_extrinsic: np.ndarray = _zeros(2, 3)
    cam_center: np.ndarray = _zeros(3, 1)
    proj_center: np.ndarray = _zeros(3, 1)
    cam_rays: np.ndarray = _zeros(3, 0)
    proj_rays: np.ndarray = _zeros(3, 0)
    proj_column_planes: np.ndarray = _zeros(0, 4)
    proj_row_planes: np.ndarray = _zeros(0, 4)
    correspondence_matrix: np.ndarray = _zeros(3, 3)

    @classmethod
    def create(cls, cam_size, proj_size):
        # Default (identity/zero) values sized for the rig
        cam_w, cam_h = cam_size
        proj_w, proj_h = proj_size
        return cls(
            cam_rays=np.zeros((3, cam_w * cam_h)),
            proj_rays=np.zeros((3, cam_w * cam_h)),
            proj_column_planes=np.zeros((proj_w, 4)),
            proj_row_planes=np.zeros((proj_h, 4)),
        )


class CalibrationStore:
    # Holds the rig calibration for the whole session and guards its flags

    def __init__(self, cam_size, proj_size):
        self.cam_size = tuple(cam_size)
        self.proj_size = tuple(proj_size)
        self.params = CalibrationParameters.create(self.cam_size, self.proj_size)
        self._cam_intrinsic_calibrated = False
        self._proj_intrinsic_calibrated = False
        self._procam_extrinsic_calibrated = False

    # ---------------------------------------------------------
    # Flags
    # ---------------------------------------------------------
    @property
    def cam_intrinsic_calibrated(self):
        return self._cam_intrinsic_calibrated

    @property
    def proj_intrinsic_calibrated(self):
        return self._proj_intrinsic_calibrated

    @property
    def procam_extrinsic_calibrated(self):
        return self._procam_extrinsic_calibrated

    @property
    def has_correspondence(self):
        return bool(np.any(self.params.correspondence_matrix))

    def is_ready_to_scan(self):
        # Single authority on whether scanning may consume the calibration
        return self._procam_extrinsic_calibrated

    # ---------------------------------------------------------
    # Updates issued by calibration operations
    # ---------------------------------------------------------
    def set_camera_intrinsic(self, intrinsic, distortion):
        self.params.cam_intrinsic = _as_matrix(intrinsic, (3, 3), "camera intrinsic")
        self.params.cam_distortion = _as_matrix(distortion, (5, 1), "camera distortion")
        self._cam_intrinsic_calibrated = True
        self._refresh_geometry()

    def set_projector_intrinsic(self, intrinsic, distortion):
        self.params.proj_intrinsic = _as_matrix(intrinsic, (3, 3), "projector intrinsic")
        self.params.proj_distortion = _as_matrix(distortion, (5, 1), "projector distortion")
        self._proj_intrinsic_calibrated = True
        self._refresh_geometry()

    def set_correspondence(self, matrix):
        self.params.correspondence_matrix = _as_matrix(matrix, (3, 3), "fundamental matrix")

    def set_extrinsic(self, cam_extrinsic, proj_extrinsic):
        if not (self._cam_intrinsic_calibrated and self._proj_intrinsic_calibrated):
            raise CalibrationStateError(
                "Extrinsic calibration requires intrinsic camera and projector calibration"
            )
        self.params.cam_extrinsic = _as_matrix(cam_extrinsic, (2, 3), "camera extrinsic")
        self.params.proj_extrinsic = _as_matrix(proj_extrinsic, (2, 3), "projector extrinsic")
        evaluate_procam_geometry(self.params, self.cam_size, self.proj_size)
        self._procam_extrinsic_calibrated = True

    def _refresh_geometry(self):
        # Rays and planes depend on the intrinsics; keep them current once derived
        if self._procam_extrinsic_calibrated:
            evaluate_procam_geometry(self.params, self.cam_size, self.proj_size)

    def invalidate_camera_intrinsic(self):
        # Dropping an intrinsic group also drops the extrinsics built on it
        self._cam_intrinsic_calibrated = False
        self._procam_extrinsic_calibrated = False

    def invalidate_projector_intrinsic(self):
        self._proj_intrinsic_calibrated = False
        self._procam_extrinsic_calibrated = False

    def invalidate_extrinsic(self):
        self._procam_extrinsic_calibrated = False

    # ---------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------
    def try_load_all(self, output_dir):
        """Load every previously saved calibration group that is complete.

        Missing artifacts leave the group uncalibrated with default values.
        """
        cam = _load_group(output_dir, *CAM_INTRINSIC_GROUP)
        if cam is not None:
            self.set_camera_intrinsic(*cam)
            logger.info("Loaded previous intrinsic camera calibration.")
        else:
            logger.info("Camera has not been intrinsically calibrated!")

        fund = _load_group(output_dir, *CORRESPONDENCE_GROUP)
        if fund is not None:
            self.set_correspondence(*fund)
            logger.info("Loaded previous fundamental matrix.")

        proj = _load_group(output_dir, *PROJ_INTRINSIC_GROUP)
        if proj is not None:
            self.set_projector_intrinsic(*proj)
            logger.info("Loaded previous intrinsic projector calibration.")
        else:
            logger.info("Projector has not been intrinsically calibrated!")

        ext = None
        if self._cam_intrinsic_calibrated and self._proj_intrinsic_calibrated:
            ext = _load_group(output_dir, *EXTRINSIC_GROUP)
        if ext is not None:
            self.set_extrinsic(*ext)
            logger.info("Loaded previous extrinsic projector-camera calibration.")
        else:
            logger.info("Projector-camera system has not been extrinsically calibrated!")

        return (
            self._cam_intrinsic_calibrated,
            self._proj_intrinsic_calibrated,
            self._procam_extrinsic_calibrated,
        )

    def persist_all(self, output_dir):
        # Only calibrated groups are written, so a prior good artifact survives
        # an unfinished re-calibration
        artifacts = []
        if self._cam_intrinsic_calibrated:
            artifacts += [
                (persistence.CAM_INTRINSIC, self.params.cam_intrinsic),
                (persistence.CAM_DISTORTION, self.params.cam_distortion),
            ]
        if self.has_correspondence:
            artifacts.append((persistence.FUNDAMENTAL_MATRIX, self.params.correspondence_matrix))
        if self._proj_intrinsic_calibrated:
            artifacts += [
                (persistence.PROJ_INTRINSIC, self.params.proj_intrinsic),
                (persistence.PROJ_DISTORTION, self.params.proj_distortion),
            ]
        if self._procam_extrinsic_calibrated:
            artifacts += [
                (persistence.CAM_EXTRINSIC, self.params.cam_extrinsic),
                (persistence.PROJ_EXTRINSIC, self.params.proj_extrinsic),
            ]

        written = []
        for artifact, matrix in artifacts:
            path = persistence.artifact_path(output_dir, artifact)
            persistence.save_matrix(path, matrix)
            written.append(path)
        logger.info("Saved %d calibration artifacts to %s", len(written), output_dir)
        return written


def _as_matrix(value, shape, name):
    matrix = np.asarray(value, dtype=np.float64)
    if matrix.size != shape[0] * shape[1]:
        raise ValueError(f"{name} must have shape {shape}, got {matrix.shape}")
    return matrix.reshape(shape).copy()


def _load_group(output_dir, *artifacts):
    # A group counts only when every one of its artifacts loads with the right size
    matrices = []
    for artifact, shape in artifacts:
        path = persistence.artifact_path(output_dir, artifact)
        matrix = persistence.load_matrix(path)
        if matrix is None:
            return None
        if matrix.size != shape[0] * shape[1]:
            logger.warning("Ignoring %s: expected shape %s, got %s", path, shape, matrix.shape)
            return None
        matrices.append(matrix)
    return matrices
