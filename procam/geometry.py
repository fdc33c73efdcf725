"""Projector-camera geometry derived from intrinsic and extrinsic calibration.

Extrinsic matrices are 2x3: row 0 is a Rodrigues rotation vector and row 1 a
translation, both mapping world (calibration board) coordinates into the
device frame. Everything produced here is expressed in world coordinates.
"""
from __future__ import annotations

import numpy as np
import cv2


def extrinsic_to_rt(extrinsic: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    ext = np.asarray(extrinsic, dtype=np.float64).reshape(2, 3)
    R, _ = cv2.Rodrigues(ext[0].reshape(3, 1))
    t = ext[1].reshape(3, 1)
    return R, t


def optical_center(extrinsic: np.ndarray) -> np.ndarray:
    # Device origin in world coordinates: C = -R^T t
    R, t = extrinsic_to_rt(extrinsic)
    return -R.T @ t


def pixel_rays(intrinsic, distortion, pixels: np.ndarray, extrinsic=None) -> np.ndarray:
    """Unit viewing rays (3xN) through the given Nx2 pixel coordinates.

    Lens distortion is removed with ``cv2.undistortPoints``. Without an
    extrinsic the rays stay in the device frame.
    """
    K = np.asarray(intrinsic, dtype=np.float64)
    D = np.asarray(distortion, dtype=np.float64).reshape(-1)
    pts = np.asarray(pixels, dtype=np.float64).reshape(-1, 1, 2)

    # Normalised image coordinates with unit depth
    norm = cv2.undistortPoints(pts, K, D).reshape(-1, 2)
    rays = np.column_stack((norm, np.ones(len(norm)))).T
    rays /= np.linalg.norm(rays, axis=0, keepdims=True)

    if extrinsic is not None:
        R, _ = extrinsic_to_rt(extrinsic)
        rays = R.T @ rays
    return rays


def pixel_grid(width: int, height: int) -> np.ndarray:
    # Row-major (x, y) coordinates of every pixel, matching a flattened image
    u, v = np.meshgrid(np.arange(width, dtype=np.float64), np.arange(height, dtype=np.float64))
    return np.column_stack((u.ravel(), v.ravel()))


def _planes_through(center, r1, r2) -> np.ndarray:
    # Plane containing the centre and both rays, as [nx, ny, nz, d] rows
    normal = np.cross(r1.T, r2.T)
    normal /= np.linalg.norm(normal, axis=1, keepdims=True)
    d = -normal @ center.reshape(3)
    return np.column_stack((normal, d))


def projector_planes(intrinsic, distortion, extrinsic, proj_size) -> tuple[np.ndarray, np.ndarray]:
    """Light planes of every projector column (proj_w x 4) and row (proj_h x 4)."""
    proj_w, proj_h = proj_size
    center = optical_center(extrinsic)

    cols = np.arange(proj_w, dtype=np.float64)
    top = np.column_stack((cols, np.zeros(proj_w)))
    bottom = np.column_stack((cols, np.full(proj_w, proj_h - 1.0)))
    col_planes = _planes_through(
        center,
        pixel_rays(intrinsic, distortion, top, extrinsic),
        pixel_rays(intrinsic, distortion, bottom, extrinsic),
    )

    rows = np.arange(proj_h, dtype=np.float64)
    left = np.column_stack((np.zeros(proj_h), rows))
    right = np.column_stack((np.full(proj_h, proj_w - 1.0), rows))
    row_planes = _planes_through(
        center,
        pixel_rays(intrinsic, distortion, left, extrinsic),
        pixel_rays(intrinsic, distortion, right, extrinsic),
    )
    return col_planes, row_planes


def evaluate_procam_geometry(params, cam_size, proj_size):
    """Fill the derived fields of ``params`` from its calibrated matrices.

    Projector rays are sampled on a grid with the camera's pixel count that
    spans the whole projector image.
    """
    cam_w, cam_h = cam_size
    proj_w, proj_h = proj_size

    params.cam_center = optical_center(params.cam_extrinsic)
    params.proj_center = optical_center(params.proj_extrinsic)

    params.cam_rays = pixel_rays(
        params.cam_intrinsic, params.cam_distortion, pixel_grid(cam_w, cam_h), params.cam_extrinsic
    )

    # Resample the projector image on the camera grid
    u = np.linspace(0.0, proj_w - 1.0, cam_w)
    v = np.linspace(0.0, proj_h - 1.0, cam_h)
    uu, vv = np.meshgrid(u, v)
    params.proj_rays = pixel_rays(
        params.proj_intrinsic,
        params.proj_distortion,
        np.column_stack((uu.ravel(), vv.ravel())),
        params.proj_extrinsic,
    )

    params.proj_column_planes, params.proj_row_planes = projector_planes(
        params.proj_intrinsic, params.proj_distortion, params.proj_extrinsic, proj_size
    )
    return params


def intersect_rays_with_planes(origin, rays, planes):
    """Intersect rays (3xN) leaving ``origin`` with planes (Nx4).

    Returns the 3xN points and a boolean mask of rays that are not parallel
    to their plane; points of parallel rays are NaN.
    """
    origin = np.asarray(origin, dtype=np.float64).reshape(3, 1)
    N = planes[:, 0:3].T
    d = planes[:, 3]

    # t = -(N . Oc + d) / (N . ray)
    denom = np.sum(N * rays, axis=0)
    numer = (N.T @ origin).ravel() + d
    valid = np.abs(denom) > 1e-9

    t = np.full(denom.shape, np.nan)
    t[valid] = -numer[valid] / denom[valid]
    return origin + rays * t, valid
