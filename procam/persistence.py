import os
import logging

import numpy as np
import scipy.io

logger = logging.getLogger(__name__)

# Extension of every persisted calibration artifact
ARTIFACT_EXT = ".mat"
# Variable name holding the matrix inside each .mat file
MATRIX_KEY = "matrix"

# --- Persisted calibration layout (relative to the output directory) ---
CAM_INTRINSIC = os.path.join("calib", "cam", "cam_intrinsic")
CAM_DISTORTION = os.path.join("calib", "cam", "cam_distortion")
FUNDAMENTAL_MATRIX = os.path.join("calib", "proj", "fundamental_matrix")
PROJ_INTRINSIC = os.path.join("calib", "proj", "proj_intrinsic")
PROJ_DISTORTION = os.path.join("calib", "proj", "proj_distortion")
CAM_EXTRINSIC = os.path.join("calib", "proj", "cam_extrinsic")
PROJ_EXTRINSIC = os.path.join("calib", "proj", "proj_extrinsic")


def artifact_path(output_dir, artifact):
    # Full file path of a named artifact under the output directory tree
    return os.path.join(output_dir, artifact + ARTIFACT_EXT)


def load_matrix(path):
    """Load one matrix saved by :func:`save_matrix`.

    Returns ``None`` when the file is missing or cannot be read, which the
    caller treats as "not calibrated" rather than as an error.
    """
    if not os.path.isfile(path):
        return None
    # scipy raises several unrelated error types on a damaged file
    try:
        data = scipy.io.loadmat(path)
        matrix = data[MATRIX_KEY]
    except Exception as e:
        logger.warning("Ignoring unreadable calibration artifact %s (%s)", path, e)
        return None
    return np.array(matrix)


def save_matrix(path, matrix):
    # Write atomically so an interrupted save never leaves a truncated artifact
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "wb") as f:
        scipy.io.savemat(f, {MATRIX_KEY: np.asarray(matrix)})
    os.replace(tmp_path, path)
    logger.debug("Saved %s", path)
