"""Fixed geometric model of a Kinect-style depth sensor and its colour camera.

Every transform here comes from the sensor's factory calibration, not from
scene calibration. Functions accept scalars or numpy arrays.
"""
from __future__ import annotations

import numpy as np

# --- Sensor constants ---
# Raw code reported for out-of-range / no-return samples
NO_DATA_CODE = 0x07FF
# Depth and colour frame size (pixels)
DEPTH_WIDTH = 640
DEPTH_HEIGHT = 480
COLOR_WIDTH = 640
COLOR_HEIGHT = 480
# Principal point of both sensors (image centre)
CENTER_X = 320.0
CENTER_Y = 240.0
# Offset added to metric depth before scaling pixels to world units
MIN_DISTANCE = -10.0
# World units per pixel per unit of depth
DEPTH_SCALE_FACTOR = 0.0021
COLOR_SCALE_FACTOR = 0.0023
# Registration offset between the depth and colour sensors (world units)
RGB_X_OFFSET = -1.8
RGB_Y_OFFSET = -2.4
# Depth of the reference plane; world Z is measured from it towards the sensor
REFERENCE_DEPTH = 200.0

# Raw-code-to-depth curve: z = 100 / (DEPTH_CURVE_A * raw + DEPTH_CURVE_B)
DEPTH_CURVE_A = -0.00307
DEPTH_CURVE_B = 3.33


def is_valid_depth_sample(raw):
    raw = np.asarray(raw)
    valid = (raw != 0) & (raw != NO_DATA_CODE)
    return bool(valid) if valid.ndim == 0 else valid


def depth_sample_to_z(raw):
    # Metric depth of a raw disparity code
    z = 100.0 / (DEPTH_CURVE_A * np.asarray(raw, dtype=np.float64) + DEPTH_CURVE_B)
    return float(z) if np.ndim(z) == 0 else z


def depth_to_world(x, y, z):
    """Unproject depth pixel ``(x, y)`` with metric depth ``z``.

    Returns world ``(X, Y, Z)`` in the depth sensor frame, with Z re-based
    on the reference plane and flipped.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    z = np.asarray(z, dtype=np.float64)

    scale = (z + MIN_DISTANCE) * DEPTH_SCALE_FACTOR
    wx = (x - CENTER_X) * scale
    wy = (y - CENTER_Y) * scale
    wz = -(z - REFERENCE_DEPTH)
    return _unwrap(wx), _unwrap(wy), _unwrap(wz)


def world_to_color_space(x, y, z):
    """Reproject a world point into colour pixel space, clamped to the frame.

    The result always lies within ``[0, COLOR_WIDTH] x [0, COLOR_HEIGHT]``;
    points on the sensor's singular plane land on the nearest border.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    # Undo the re-basing done by depth_to_world
    depth = REFERENCE_DEPTH - np.asarray(z, dtype=np.float64)
    denom = depth + MIN_DISTANCE

    with np.errstate(divide="ignore", invalid="ignore"):
        cx = (x + RGB_X_OFFSET) / COLOR_SCALE_FACTOR / denom + CENTER_X
        cy = (y + RGB_Y_OFFSET) / COLOR_SCALE_FACTOR / denom + CENTER_Y

    cx = np.clip(np.nan_to_num(cx, nan=CENTER_X, posinf=COLOR_WIDTH, neginf=0.0), 0.0, COLOR_WIDTH)
    cy = np.clip(np.nan_to_num(cy, nan=CENTER_Y, posinf=COLOR_HEIGHT, neginf=0.0), 0.0, COLOR_HEIGHT)
    return _unwrap(cx), _unwrap(cy)


def depth_frame_to_points(raw_depth, color_image):
    """Convert a raw depth frame to textured world points.

    Returns ``(points, colors)`` as Nx3 float and Nx3 uint8 arrays, one row
    per valid depth sample. Colours are sampled from ``color_image`` at the
    registered position (BGR channel order is kept).
    """
    raw_depth = np.asarray(raw_depth)
    color = np.asarray(color_image)

    valid = is_valid_depth_sample(raw_depth)
    ys, xs = np.nonzero(valid)
    z = depth_sample_to_z(raw_depth[ys, xs])

    wx, wy, wz = depth_to_world(xs, ys, z)
    cx, cy = world_to_color_space(wx, wy, wz)

    # Clamped coordinates may touch the far border; sample the last pixel there
    ci = np.minimum(np.asarray(cx).astype(int), color.shape[1] - 1)
    cj = np.minimum(np.asarray(cy).astype(int), color.shape[0] - 1)

    points = np.column_stack((wx, wy, wz)).reshape(-1, 3)
    colors = color[cj, ci].reshape(-1, 3)
    return points, colors


def _unwrap(value):
    return float(value) if np.ndim(value) == 0 else value
