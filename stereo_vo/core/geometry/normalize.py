from __future__ import annotations
from typing import Optional
import numpy as np
import cv2

# fixed-point undistortion needs more than OpenCV's default 5 iterations for strong radial terms
UNDISTORT_CRITERIA = (cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS, 100, 1e-12)


def normalize_points(K_inv: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Pixel points (N,2) -> normalized camera coordinates (N,2): x_n = dehom(K^-1 [u, v, 1]^T).
    """
    K_inv = np.asarray(K_inv, dtype=np.float64)
    if K_inv.shape != (3, 3):
        raise ValueError(f"K_inv must be 3x3, got {K_inv.shape}")

    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    pts_h = np.hstack([pts, np.ones((pts.shape[0], 1))])
    rays = pts_h @ K_inv.T
    return rays[:, :2] / rays[:, 2:3]


def _undistort(K: np.ndarray, dist: np.ndarray, pts: np.ndarray, P: Optional[np.ndarray]) -> np.ndarray:
    und = cv2.undistortPointsIter(pts.reshape(-1, 1, 2), np.asarray(K, dtype=np.float64),
                                  np.asarray(dist, dtype=np.float64), None, P, UNDISTORT_CRITERIA)
    return und.reshape(-1, 2).astype(np.float64)


def undistort_normalize(K: np.ndarray, dist: Optional[np.ndarray], points: np.ndarray) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if dist is None or not np.any(np.asarray(dist) != 0.0) or pts.shape[0] == 0:
        return normalize_points(np.linalg.inv(K), pts)
    return _undistort(K, dist, pts, None)


def undistort_pixels(K: np.ndarray, dist: Optional[np.ndarray], points: np.ndarray) -> np.ndarray:
    """
    Distorted pixels (N,2) -> the pixels an ideal pinhole camera with the same K would see.
    Epipolar geometry estimated on these is consistent with E = K^T F K and undistorted rays.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if dist is None or not np.any(np.asarray(dist) != 0.0) or pts.shape[0] == 0:
        return pts.copy()
    return _undistort(K, dist, pts, np.asarray(K, dtype=np.float64))
