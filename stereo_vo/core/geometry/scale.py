'''
Metric scale for the two monocular motions of the rig.
Each camera's essential-matrix motion has |t| = 1. The stereo baseline is known, so
  - triangulation ratio: distances of points triangulated with the stereo pair
    vs. with the (unit) monocular motion, per camera
  - translation ratio: the rig is rigid, so left and right motions must satisfy
      u_R t_R - u_L R_LR t_L = (I - R_LR R_L R_LR^T) t_LR
    which fixes (u_L, u_R) whenever the rig rotates.
Both are computed; the policy picks the one that scales the trajectory, the other is a cross-check.
'''
from __future__ import annotations
from dataclasses import dataclass, field
import logging
from typing import Tuple
import numpy as np

from stereo_vo.core.stereo.triangulation import TriangulationParams, depths, triangulate_points

log = logging.getLogger(__name__)

SCALE_POLICIES = ("triangulation", "translation", "mean")


@dataclass
class ScaleParams:
    policy: str = "triangulation"
    divergence_warn: float = 0.5        # relative difference between the two estimators
    min_rotation_signal: float = 1e-9   # |rhs| below this -> translation method is unobservable
    triangulation: TriangulationParams = field(default_factory=TriangulationParams)


@dataclass(frozen=True)
class ScaleEstimate:
    triangulation: Tuple[float, float]   # (u_L, u_R)
    translation: Tuple[float, float]     # (u_L, u_R)
    left: float                          # selected
    right: float
    divergence: float                    # max relative difference, nan if not comparable

    @property
    def reliable(self) -> bool:
        return bool(np.isfinite(self.left) and np.isfinite(self.right) and self.left > 0 and self.right > 0)


def _median_ratio(X_metric: np.ndarray, X_unit: np.ndarray) -> float:
    d_metric = np.linalg.norm(X_metric, axis=1)
    d_unit = np.linalg.norm(X_unit, axis=1)
    ok = (X_metric[:, 2] > 0) & (X_unit[:, 2] > 0) & (d_unit > 1e-12)
    ok &= np.isfinite(d_metric) & np.isfinite(d_unit)
    if not np.any(ok):
        return float("nan")
    return float(np.median(d_metric[ok] / d_unit[ok]))


def scale_from_triangulation(P0: np.ndarray, P_LR: np.ndarray, P_L: np.ndarray, P_R: np.ndarray,
                             nL1: np.ndarray, nR1: np.ndarray, nL2: np.ndarray, nR2: np.ndarray,
                             params: TriangulationParams | None = None) -> Tuple[float, float]:
    X_stereo = triangulate_points(P0, P_LR, nL1, nR1, params)     # metric, left camera frame at k
    X_left = triangulate_points(P0, P_L, nL1, nL2, params)        # unit scale, left camera frame at k
    X_right = triangulate_points(P0, P_R, nR1, nR2, params)       # unit scale, right camera frame at k

    X_stereo_r = X_stereo @ P_LR[:, :3].T + P_LR[:, 3]
    front = depths(P_LR, X_stereo) > 0
    u_L = _median_ratio(X_stereo[front], X_left[front])
    u_R = _median_ratio(X_stereo_r[front], X_right[front])
    return u_L, u_R


def scale_from_translation(R_L: np.ndarray, t_L: np.ndarray, t_R: np.ndarray,
                           R_LR: np.ndarray, t_LR: np.ndarray,
                           min_signal: float = 1e-9) -> Tuple[float, float]:
    t_L = np.asarray(t_L, dtype=np.float64).ravel()
    t_R = np.asarray(t_R, dtype=np.float64).ravel()
    t_LR = np.asarray(t_LR, dtype=np.float64).ravel()

    R_R_pred = R_LR @ R_L @ R_LR.T
    rhs = (np.eye(3) - R_R_pred) @ t_LR
    if np.linalg.norm(rhs) < min_signal * max(np.linalg.norm(t_LR), 1.0):
        # no rotation: the rig constraint is homogeneous, any common scale fits
        return float("nan"), float("nan")

    A = np.column_stack([-R_LR @ t_L, t_R])
    sol, _, rank, _ = np.linalg.lstsq(A, rhs, rcond=None)
    if rank < 2:
        return float("nan"), float("nan")
    return float(sol[0]), float(sol[1])


def _relative_divergence(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    vals = []
    for x, y in zip(a, b):
        if not (np.isfinite(x) and np.isfinite(y)):
            return float("nan")
        vals.append(abs(x - y) / max(abs(x), abs(y), 1e-12))
    return float(max(vals))


def _select(policy: str, tri: Tuple[float, float], trans: Tuple[float, float]) -> Tuple[float, float]:
    tri_ok = all(np.isfinite(v) for v in tri)
    trans_ok = all(np.isfinite(v) for v in trans)
    if policy == "mean" and tri_ok and trans_ok:
        return 0.5 * (tri[0] + trans[0]), 0.5 * (tri[1] + trans[1])
    if policy == "translation":
        return trans if trans_ok else tri
    return tri if tri_ok else trans


def scale_from_stereo_baseline(P0: np.ndarray, P_LR: np.ndarray, P_L: np.ndarray, P_R: np.ndarray,
                               nL1: np.ndarray, nR1: np.ndarray, nL2: np.ndarray, nR2: np.ndarray,
                               params: ScaleParams | None = None) -> ScaleEstimate:
    p = params or ScaleParams()
    if p.policy not in SCALE_POLICIES:
        raise ValueError(f"unknown scale policy {p.policy!r}, expected one of {SCALE_POLICIES}")

    tri = scale_from_triangulation(P0, P_LR, P_L, P_R, nL1, nR1, nL2, nR2, p.triangulation)
    trans = scale_from_translation(P_L[:, :3], P_L[:, 3], P_R[:, 3], P_LR[:, :3], P_LR[:, 3],
                                   p.min_rotation_signal)
    left, right = _select(p.policy, tri, trans)
    divergence = _relative_divergence(tri, trans)

    log.debug(f"[Scale] triangulation=({tri[0]:.4f}, {tri[1]:.4f}) translation=({trans[0]:.4f}, {trans[1]:.4f})")
    if np.isfinite(divergence) and divergence > p.divergence_warn:
        log.warning(f"[Scale] estimators disagree by {divergence * 100:.0f}%")

    return ScaleEstimate(triangulation=tri, translation=trans, left=float(left), right=float(right),
                         divergence=divergence)
