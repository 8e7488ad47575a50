# stereo_vo/frontend/strategies.py
# Interchangeable ways of turning one frame's correspondences into left/right camera motion
from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass, field
import logging
from typing import Callable, Dict, Optional, Protocol, Tuple

import numpy as np

from stereo_vo.types import GeometryEstimationFailure, InsufficientData, PoseAmbiguityFailure
from stereo_vo.core.stereo.calib import StereoCalibration
from stereo_vo.core.stereo.stereo_types import CorrespondenceTable
from stereo_vo.core.stereo.triangulation import TriangulationParams, depths, triangulate_points
from stereo_vo.core.geometry.essential import PoseSelectionParams, essential_from_fundamental, select_valid_pose
from stereo_vo.core.geometry.scale import ScaleEstimate, ScaleParams, scale_from_stereo_baseline
from stereo_vo.core.vision.pnp import PnPParams, solve_pnp

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraMotion:
    R: np.ndarray   # (3,3)  X_{k+1} = R X_k + t
    t: np.ndarray   # (3,)   metric

    def __iter__(self):
        return iter((self.R, self.t))


@dataclass
class MotionEstimate:
    method: str
    left: CameraMotion
    right: CameraMotion
    cloud: np.ndarray                       # (N,3) metric, left camera frame at k, rows follow the table
    scale: Optional[ScaleEstimate] = None


@dataclass
class FrameContext:
    index: int
    table: CorrespondenceTable              # F-inlier pixel correspondences
    normalized: Dict[str, np.ndarray]       # view -> (N,2) normalized points
    F: Dict[str, np.ndarray]                # "left" / "right" -> (3,3), view k -> view k+1, pixels undistorted if undistort
    calib: StereoCalibration
    undistort: bool = False
    executor: Optional[Executor] = None
    guesses: Dict[str, "MotionEstimate"] = field(default_factory=dict)   # earlier methods of this frame


class PoseEstimationStrategy(Protocol):
    name: str
    def estimate(self, ctx: FrameContext) -> MotionEstimate: ...


def run_branches(executor: Optional[Executor], fn: Callable, left_args: tuple, right_args: tuple,
                 **kwargs) -> Tuple:
    """Run fn for the left and the right camera, on the executor if one is given."""
    if executor is None:
        return fn(*left_args, **kwargs), fn(*right_args, **kwargs)
    fut_l = executor.submit(fn, *left_args, **kwargs)
    fut_r = executor.submit(fn, *right_args, **kwargs)
    return fut_l.result(), fut_r.result()


def right_motion_from_left(R_L: np.ndarray, t_L: np.ndarray,
                           R_LR: np.ndarray, t_LR: np.ndarray) -> CameraMotion:
    R_R = R_LR @ R_L @ R_LR.T
    t_R = R_LR @ t_L + t_LR - R_R @ t_LR
    return CameraMotion(R_R, t_R)


def rigid_transform_3d(A: np.ndarray, B: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Least-squares R, t with B ~ R A + t (Kabsch, no scale).
    A, B: (N,3) with N >= 3
    """
    mu_a = A.mean(axis=0)
    mu_b = B.mean(axis=0)
    H = (A - mu_a).T @ (B - mu_b)
    U, _, Vt = np.linalg.svd(H)
    D = np.diag([1.0, 1.0, np.sign(np.linalg.det(Vt.T @ U.T))])
    R = Vt.T @ D @ U.T
    t = mu_b - R @ mu_a
    return R, t


class DecompositionStrategy:
    """Essential-matrix decomposition per camera, scaled with the stereo baseline."""
    name = "decomposition"

    def __init__(self, pose_params: Optional[PoseSelectionParams] = None,
                 scale_params: Optional[ScaleParams] = None):
        self.pose_params = pose_params or PoseSelectionParams()
        self.scale_params = scale_params or ScaleParams()

    def estimate(self, ctx: FrameContext) -> MotionEstimate:
        c = ctx.calib
        n = ctx.normalized
        E_L = essential_from_fundamental(ctx.F["left"], c.left.K)
        E_R = essential_from_fundamental(ctx.F["right"], c.right.K)

        sel_L, sel_R = run_branches(
            ctx.executor, select_valid_pose,
            (E_L, n["L1"], n["L2"]), (E_R, n["R1"], n["R2"]),
            params=self.pose_params,
        )
        if not sel_L.success or not sel_R.success:
            raise PoseAmbiguityFailure(
                f"no valid decomposition (left front={sel_L.front_ratio:.2f}, right front={sel_R.front_ratio:.2f})"
            )

        scale = scale_from_stereo_baseline(
            c.P0, c.extrinsics.P, sel_L.P, sel_R.P,
            n["L1"], n["R1"], n["L2"], n["R2"], self.scale_params
        )
        if not scale.reliable:
            raise InsufficientData("no usable depth for scale recovery")

        return MotionEstimate(
            method=self.name,
            left=CameraMotion(sel_L.R, scale.left * sel_L.t),
            right=CameraMotion(sel_R.R, scale.right * sel_R.t),
            cloud=sel_L.cloud * scale.left,
            scale=scale,
        )


class PnPStrategy:
    """
    Metric stereo cloud at k, PnP + RANSAC against the observations at k+1.

    When the method named by guess_from already produced an estimate for this frame,
    its per-camera [R | t] seeds solvePnPRansac as the extrinsic guess. Otherwise PnP
    starts from the identity without a guess.
    """
    name = "pnp"

    def __init__(self, pnp_params: Optional[PnPParams] = None,
                 triangulation: Optional[TriangulationParams] = None,
                 guess_from: Optional[str] = "decomposition"):
        self.pnp_params = pnp_params or PnPParams()
        self.triangulation = triangulation or TriangulationParams()
        self.guess_from = guess_from

    def estimate(self, ctx: FrameContext) -> MotionEstimate:
        c = ctx.calib
        n = ctx.normalized
        P_LR = c.extrinsics.P

        world = triangulate_points(c.P0, P_LR, n["L1"], n["R1"], self.triangulation)
        front = (world[:, 2] > 0) & (depths(P_LR, world) > 0)
        if int(front.sum()) < self.pnp_params.min_inliers:
            raise InsufficientData(f"only {int(front.sum())} stereo points in front of the rig")

        world_r = c.extrinsics.to_right(world)
        dist_L = c.left.dist if ctx.undistort else None
        dist_R = c.right.dist if ctx.undistort else None

        guess = ctx.guesses.get(self.guess_from) if self.guess_from else None
        known_L = known_R = None
        if guess is not None:
            known_L = np.hstack([guess.left.R, guess.left.t.reshape(3, 1)])
            known_R = np.hstack([guess.right.R, guess.right.t.reshape(3, 1)])
            log.debug(f"[PnP] frame {ctx.index}: seeded with the {self.guess_from} estimate")

        res_L, res_R = run_branches(
            ctx.executor, solve_pnp,
            (known_L, c.left.K, world[front], ctx.table.view("L2")[front], dist_L),
            (known_R, c.right.K, world_r[front], ctx.table.view("R2")[front], dist_R),
            params=self.pnp_params,
        )
        if not res_L.success or not res_R.success:
            raise GeometryEstimationFailure("PnP failed for at least one camera")

        log.debug(f"[PnP] inliers left={len(res_L.inliers)} right={len(res_R.inliers)}")
        return MotionEstimate(
            method=self.name,
            left=CameraMotion(res_L.R, res_L.t),
            right=CameraMotion(res_R.R, res_R.t),
            cloud=world,
        )


class StereoTriangulationStrategy:
    """Triangulate with the stereo pair at k and at k+1, align the two clouds rigidly."""
    name = "stereo_triangulation"

    def __init__(self, triangulation: Optional[TriangulationParams] = None, outlier_factor: float = 3.0):
        self.triangulation = triangulation or TriangulationParams()
        self.outlier_factor = outlier_factor

    def estimate(self, ctx: FrameContext) -> MotionEstimate:
        c = ctx.calib
        n = ctx.normalized
        P_LR = c.extrinsics.P

        X1, X2 = run_branches(
            ctx.executor, triangulate_points,
            (c.P0, P_LR, n["L1"], n["R1"]), (c.P0, P_LR, n["L2"], n["R2"]),
            params=self.triangulation,
        )
        ok = (X1[:, 2] > 0) & (X2[:, 2] > 0) & (depths(P_LR, X1) > 0) & (depths(P_LR, X2) > 0)
        if int(ok.sum()) < 3:
            raise InsufficientData(f"only {int(ok.sum())} points triangulated in front of both stereo pairs")

        R, t = rigid_transform_3d(X1[ok], X2[ok])
        # one re-fit without the gross residuals
        res = np.linalg.norm(X1[ok] @ R.T + t - X2[ok], axis=1)
        keep = res <= self.outlier_factor * max(float(np.median(res)), 1e-12)
        if int(keep.sum()) >= 3:
            R, t = rigid_transform_3d(X1[ok][keep], X2[ok][keep])

        return MotionEstimate(
            method=self.name,
            left=CameraMotion(R, t),
            right=right_motion_from_left(R, t, P_LR[:, :3], P_LR[:, 3]),
            cloud=X1,
        )


STRATEGIES: Dict[str, type] = {
    DecompositionStrategy.name: DecompositionStrategy,
    PnPStrategy.name: PnPStrategy,
    StereoTriangulationStrategy.name: StereoTriangulationStrategy,
}


def make_strategy(name: str,
                  pose_params: Optional[PoseSelectionParams] = None,
                  scale_params: Optional[ScaleParams] = None,
                  pnp_params: Optional[PnPParams] = None,
                  triangulation: Optional[TriangulationParams] = None) -> PoseEstimationStrategy:
    if name == DecompositionStrategy.name:
        return DecompositionStrategy(pose_params, scale_params)
    if name == PnPStrategy.name:
        return PnPStrategy(pnp_params, triangulation)
    if name == StereoTriangulationStrategy.name:
        return StereoTriangulationStrategy(triangulation)
    raise ValueError(f"unknown pose estimation method {name!r}, expected one of {sorted(STRATEGIES)}")
