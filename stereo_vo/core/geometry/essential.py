'''
Essential matrix -> relative pose.
E = U diag(1,1,0) V^T gives two rotations (U W V^T, U W^T V^T) and two translations (+-u3).
Only one of the four combinations puts the points in front of both cameras; that one is selected
by triangulating a subset of the correspondences with each candidate.
'''
from __future__ import annotations
from dataclasses import dataclass, field
import logging
from typing import Optional, Tuple
import numpy as np

from stereo_vo.core.geometry.normalize import normalize_points, undistort_normalize
from stereo_vo.core.stereo.triangulation import TriangulationParams, depths, triangulate_points

log = logging.getLogger(__name__)

W = np.array([[0.0, -1.0, 0.0],
              [1.0, 0.0, 0.0],
              [0.0, 0.0, 1.0]], dtype=np.float64)

P0 = np.hstack([np.eye(3), np.zeros((3, 1))])


@dataclass
class PoseSelectionParams:
    coherence_eps: float = 1e-7
    min_front_ratio: float = 0.75      # fraction of points with positive depth in both cameras
    max_validation_points: int = 200
    min_singular_ratio: float = 0.7    # second/first singular value of E
    triangulation: TriangulationParams = field(default_factory=TriangulationParams)


@dataclass(frozen=True)
class PoseSelection:
    P: Optional[np.ndarray]     # (3,4) [R | t], |t| = 1
    R: Optional[np.ndarray]
    t: Optional[np.ndarray]     # (3,)
    cloud: np.ndarray           # (N,3) in the first camera frame, unit-baseline scale
    success: bool
    front_ratio: float = 0.0


def skew(w: np.ndarray) -> np.ndarray:
    wx, wy, wz = np.asarray(w, dtype=np.float64).ravel()
    return np.array([[0, -wz, wy],
                     [wz, 0, -wx],
                     [-wy, wx, 0]], dtype=np.float64)


def essential_from_fundamental(F: np.ndarray, K_a: np.ndarray, K_b: Optional[np.ndarray] = None) -> np.ndarray:
    K_b = K_a if K_b is None else K_b
    return K_b.T @ F @ K_a


def project_to_essential(E: np.ndarray) -> np.ndarray:
    """Closest matrix with singular values (1,1,0)."""
    U, _, Vt = np.linalg.svd(E)
    return U @ np.diag([1.0, 1.0, 0.0]) @ Vt


def decompose_essential(E: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    U, _, Vt = np.linalg.svd(project_to_essential(E))
    R1 = U @ W @ Vt
    R2 = U @ W.T @ Vt
    t1 = U[:, 2].copy()
    t2 = -U[:, 2]
    return R1, R2, t1, t2


def check_coherent_rotation(R: np.ndarray, eps: float = 1e-7) -> bool:
    if abs(np.linalg.det(R) - 1.0) > eps:
        return False
    return True


def _singular_ratio(E: np.ndarray) -> float:
    s = np.linalg.svd(E, compute_uv=False)
    if s[0] <= 0.0:
        return 0.0
    return float(s[1] / s[0])


def _validation_subset(n: int, max_points: int) -> np.ndarray:
    if n <= max_points:
        return np.arange(n)
    return np.unique(np.linspace(0, n - 1, max_points).round().astype(int))


def _front_ratio(P: np.ndarray, X: np.ndarray) -> float:
    if X.shape[0] == 0:
        return 0.0
    in_front = (depths(P0, X) > 0.0) & (depths(P, X) > 0.0)
    return float(in_front.mean())


def select_valid_pose(E: np.ndarray,
                      points_a: np.ndarray,
                      points_b: np.ndarray,
                      K: Optional[np.ndarray] = None,
                      K_inv: Optional[np.ndarray] = None,
                      dist_coeffs: Optional[np.ndarray] = None,
                      params: Optional[PoseSelectionParams] = None) -> PoseSelection:
    """
    points_a, points_b: (N,2) correspondences. Pixel points if K or K_inv is given
    (normalized here), otherwise already in normalized camera coordinates.
    """
    p = params or PoseSelectionParams()
    a = np.asarray(points_a, dtype=np.float64).reshape(-1, 2)
    b = np.asarray(points_b, dtype=np.float64).reshape(-1, 2)
    if K is not None and dist_coeffs is not None:
        a = undistort_normalize(K, dist_coeffs, a)
        b = undistort_normalize(K, dist_coeffs, b)
    elif K_inv is not None or K is not None:
        K_inv = np.linalg.inv(K) if K_inv is None else K_inv
        a = normalize_points(K_inv, a)
        b = normalize_points(K_inv, b)

    failed = PoseSelection(P=None, R=None, t=None, cloud=np.zeros((0, 3)), success=False)
    if a.shape[0] == 0 or a.shape[0] != b.shape[0]:
        return failed

    ratio = _singular_ratio(E)
    if ratio < p.min_singular_ratio:
        log.debug(f"[Pose] singular values of E too far apart (ratio={ratio:.3f})")
        return failed

    R1, R2, t1, t2 = decompose_essential(E)
    if np.linalg.det(R1) < 0.0:
        # E and -E describe the same geometry; -E yields the proper rotations -R1, -R2
        R1, R2 = -R1, -R2

    sub = _validation_subset(a.shape[0], p.max_validation_points)
    best_ratio = 0.0
    for R, t in ((R1, t1), (R1, t2), (R2, t1), (R2, t2)):
        if not check_coherent_rotation(R, p.coherence_eps):
            log.debug("[Pose] candidate rotation is not coherent")
            continue

        P = np.hstack([R, t.reshape(3, 1)])
        X = triangulate_points(P0, P, a[sub], b[sub], p.triangulation)
        front = _front_ratio(P, X)
        best_ratio = max(best_ratio, front)
        if front < p.min_front_ratio:
            continue

        cloud = triangulate_points(P0, P, a, b, p.triangulation)
        log.debug(f"[Pose] accepted candidate, {front * 100:.1f}% in front of both cameras")
        return PoseSelection(P=P, R=R, t=t.copy(), cloud=cloud, success=True, front_ratio=front)

    log.debug(f"[Pose] no valid decomposition (best front ratio {best_ratio:.2f})")
    return PoseSelection(P=None, R=None, t=None, cloud=np.zeros((0, 3)), success=False, front_ratio=best_ratio)
