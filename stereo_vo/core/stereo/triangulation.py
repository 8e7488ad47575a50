'''
Triangulation (two views, general projection matrices)
Hartley-Zisserman iterative linear least squares: solve the 4x3 linear system,
re-weight each equation pair by the projective depth of the last estimate, repeat.
Exact for noiseless data; close to the reprojection-error optimum otherwise.
'''
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import numpy as np


@dataclass
class TriangulationParams:
    max_iters: int = 10
    weight_eps: float = 1e-4


def _solve_weighted(P1: np.ndarray, P2: np.ndarray,
                    x1: np.ndarray, x2: np.ndarray,
                    w1: np.ndarray, w2: np.ndarray) -> np.ndarray:
    n = x1.shape[0]
    A = np.empty((n, 4, 3), dtype=np.float64)
    b = np.empty((n, 4), dtype=np.float64)

    for r, (P, x, w) in enumerate(((P1, x1, w1), (P1, x1, w1), (P2, x2, w2), (P2, x2, w2))):
        c = r % 2   # 0 -> u row, 1 -> v row
        A[:, r, :] = (x[:, c, None] * P[2, :3] - P[c, :3]) / w[:, None]
        b[:, r] = -(x[:, c] * P[2, 3] - P[c, 3]) / w

    # batched SVD-based least squares
    return (np.linalg.pinv(A) @ b[..., None])[..., 0]


def triangulate_points(P1: np.ndarray, P2: np.ndarray,
                       points_a: np.ndarray, points_b: np.ndarray,
                       params: Optional[TriangulationParams] = None) -> np.ndarray:
    """
    P1, P2: (3,4) projection matrices in normalized camera space
    points_a, points_b: (N,2) normalized image points, row i of both is one correspondence
    returns (N,3) points in the frame P1 and P2 are expressed in
    """
    p = params or TriangulationParams()
    x1 = np.asarray(points_a, dtype=np.float64).reshape(-1, 2)
    x2 = np.asarray(points_b, dtype=np.float64).reshape(-1, 2)
    if x1.shape[0] != x2.shape[0]:
        raise ValueError(f"point counts differ: {x1.shape[0]} vs {x2.shape[0]}")
    n = x1.shape[0]
    if n == 0:
        return np.zeros((0, 3), dtype=np.float64)

    w1 = np.ones(n)
    w2 = np.ones(n)
    X = _solve_weighted(P1, P2, x1, x2, w1, w2)

    for _ in range(p.max_iters):
        Xh = np.hstack([X, np.ones((n, 1))])
        d1 = Xh @ P1[2]
        d2 = Xh @ P2[2]

        done = (np.abs(w1 - d1) <= p.weight_eps) & (np.abs(w2 - d2) <= p.weight_eps)
        if np.all(done):
            break

        # a depth of ~0 would blow the weights up; keep the previous one there
        upd1 = ~done & (np.abs(d1) > 1e-12)
        upd2 = ~done & (np.abs(d2) > 1e-12)
        w1 = np.where(upd1, d1, w1)
        w2 = np.where(upd2, d2, w2)

        X_new = _solve_weighted(P1, P2, x1, x2, w1, w2)
        X = np.where(done[:, None], X, X_new)

    return X


def depths(P: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Depth of (N,3) points along the optical axis of camera P=[R|t]."""
    return X @ P[2, :3] + P[2, 3]


def project(P: np.ndarray, X: np.ndarray) -> np.ndarray:
    Xh = np.hstack([X, np.ones((X.shape[0], 1))])
    x = Xh @ P.T
    return x[:, :2] / x[:, 2:3]


def reprojection_errors(P: np.ndarray, X: np.ndarray, x: np.ndarray) -> np.ndarray:
    return np.linalg.norm(project(P, X) - np.asarray(x, dtype=np.float64).reshape(-1, 2), axis=1)
