'''
Robust fundamental matrix between two views of one camera (k -> k+1).
Outliers are not removed here: their rows are zeroed so that the left and right
results can be joined row-by-row before pruning.
'''
from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Optional
import numpy as np
import cv2

log = logging.getLogger(__name__)


@dataclass
class FundamentalParams:
    min_points: int = 8
    ransac_threshold_px: float = 1.0
    confidence: float = 0.98
    max_iters: int = 2000
    collinearity_tol: float = 1e-6


@dataclass(frozen=True)
class FundamentalResult:
    F: Optional[np.ndarray]   # (3,3) with x_b^T F x_a = 0
    inliers_a: np.ndarray     # (N,2), outlier rows set to (0,0)
    inliers_b: np.ndarray     # (N,2), outlier rows set to (0,0)
    mask: np.ndarray          # (N,) bool, True for inliers
    success: bool

    @property
    def n_inliers(self) -> int:
        return int(self.mask.sum())


def _failure(a: np.ndarray, b: np.ndarray) -> FundamentalResult:
    n = min(a.shape[0], b.shape[0])
    return FundamentalResult(
        F=None,
        inliers_a=np.zeros((a.shape[0], 2)),
        inliers_b=np.zeros((b.shape[0], 2)),
        mask=np.zeros(n, dtype=bool),
        success=False,
    )


def is_collinear(points: np.ndarray, tol: float = 1e-6) -> bool:
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if pts.shape[0] < 3:
        return True
    centered = pts - pts.mean(axis=0)
    s = np.linalg.svd(centered, compute_uv=False)
    return bool(s[1] <= tol * max(s[0], 1.0))


def estimate_fundamental(points_a: np.ndarray, points_b: np.ndarray,
                         params: Optional[FundamentalParams] = None) -> FundamentalResult:
    p = params or FundamentalParams()
    a = np.ascontiguousarray(np.asarray(points_a, dtype=np.float64).reshape(-1, 2))
    b = np.ascontiguousarray(np.asarray(points_b, dtype=np.float64).reshape(-1, 2))

    if a.shape[0] != b.shape[0]:
        log.debug(f"[F] size mismatch {a.shape[0]} vs {b.shape[0]}")
        return _failure(a, b)
    if a.shape[0] < p.min_points:
        log.debug(f"[F] too few points ({a.shape[0]} < {p.min_points})")
        return _failure(a, b)
    if is_collinear(a, p.collinearity_tol) or is_collinear(b, p.collinearity_tol):
        log.debug("[F] degenerate configuration (collinear points)")
        return _failure(a, b)

    try:
        F, mask = cv2.findFundamentalMat(
            a, b, method=cv2.FM_RANSAC,
            ransacReprojThreshold=p.ransac_threshold_px,
            confidence=p.confidence, maxIters=p.max_iters
        )
    except cv2.error as e:
        log.debug(f"[F] OpenCV failed: {e}")
        return _failure(a, b)

    if F is None or mask is None or F.shape[0] < 3:
        return _failure(a, b)

    F = F[:3, :3].astype(np.float64)
    inl = mask.reshape(-1).astype(bool)
    if int(inl.sum()) >= p.min_points:
        # refine on the consensus set, then re-score every point against the refined model
        F_ref, _ = cv2.findFundamentalMat(a[inl], b[inl], cv2.FM_8POINT)
        if F_ref is not None and F_ref.shape == (3, 3):
            F = F_ref.astype(np.float64)
    inl = epipolar_distances(F, a, b) <= p.ransac_threshold_px

    if int(inl.sum()) < p.min_points:
        log.debug(f"[F] too few inliers ({int(inl.sum())})")
        return _failure(a, b)

    in_a = a.copy()
    in_b = b.copy()
    in_a[~inl] = 0.0
    in_b[~inl] = 0.0
    return FundamentalResult(F=F, inliers_a=in_a, inliers_b=in_b, mask=inl, success=True)


def epipolar_distances(F: np.ndarray, points_a: np.ndarray, points_b: np.ndarray) -> np.ndarray:
    """Point-to-epipolar-line distance in pixels, worse of the two views, (N,)."""
    a = np.hstack([np.asarray(points_a, dtype=np.float64).reshape(-1, 2), np.ones((len(points_a), 1))])
    b = np.hstack([np.asarray(points_b, dtype=np.float64).reshape(-1, 2), np.ones((len(points_b), 1))])
    lines_b = a @ F.T        # epipolar lines in view b
    lines_a = b @ F          # epipolar lines in view a
    num = np.abs(np.sum(b * lines_b, axis=1))
    d_b = num / np.maximum(np.linalg.norm(lines_b[:, :2], axis=1), 1e-12)
    d_a = num / np.maximum(np.linalg.norm(lines_a[:, :2], axis=1), 1e-12)
    return np.maximum(d_a, d_b)
