'''
Pose from known 3D points and their 2D observations (PnP + RANSAC).
Used as an independent check of the decomposition-based motion: the stereo cloud of
frame k is metric, so the solved pose is metric without any scale recovery.
'''
from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Optional
import numpy as np
import cv2

log = logging.getLogger(__name__)


@dataclass
class PnPParams:
    reprojection_error_px: float = 8.0
    confidence: float = 0.99
    iterations: int = 100
    min_inliers: int = 6
    flags: int = cv2.SOLVEPNP_ITERATIVE


@dataclass(frozen=True)
class PnPResult:
    R: Optional[np.ndarray]   # (3,3) world -> camera
    t: Optional[np.ndarray]   # (3,)
    inliers: np.ndarray       # indices into the input points
    success: bool


def solve_pnp(known_projection: Optional[np.ndarray],
              K: np.ndarray,
              world_points: np.ndarray,
              image_points: np.ndarray,
              dist_coeffs: Optional[np.ndarray] = None,
              params: Optional[PnPParams] = None) -> PnPResult:
    """
    known_projection: optional (3,4) [R | t] used as the initial guess
    world_points: (N,3), image_points: (N,2) pixels
    """
    p = params or PnPParams()
    obj = np.ascontiguousarray(np.asarray(world_points, dtype=np.float64).reshape(-1, 3))
    img = np.ascontiguousarray(np.asarray(image_points, dtype=np.float64).reshape(-1, 2))
    failed = PnPResult(R=None, t=None, inliers=np.zeros(0, dtype=int), success=False)

    if obj.shape[0] != img.shape[0] or obj.shape[0] < max(4, p.min_inliers):
        log.debug(f"[PnP] not enough 2D-3D pairs ({obj.shape[0]})")
        return failed

    use_guess = known_projection is not None
    if use_guess:
        rvec, _ = cv2.Rodrigues(np.asarray(known_projection[:, :3], dtype=np.float64))
        tvec = np.asarray(known_projection[:, 3], dtype=np.float64).reshape(3, 1).copy()
    else:
        rvec = np.zeros((3, 1))
        tvec = np.zeros((3, 1))

    try:
        ok, rvec, tvec, inliers = cv2.solvePnPRansac(
            obj, img, np.asarray(K, dtype=np.float64), dist_coeffs,
            rvec=rvec, tvec=tvec, useExtrinsicGuess=use_guess,
            iterationsCount=p.iterations, reprojectionError=p.reprojection_error_px,
            confidence=p.confidence, flags=p.flags
        )
    except cv2.error as e:
        log.debug(f"[PnP] OpenCV failed: {e}")
        return failed

    if not ok or inliers is None or len(inliers) < p.min_inliers:
        log.debug(f"[PnP] RANSAC failed or too few inliers ({0 if inliers is None else len(inliers)})")
        return failed

    R, _ = cv2.Rodrigues(rvec)
    return PnPResult(R=R, t=tvec.reshape(3), inliers=inliers.reshape(-1), success=True)
