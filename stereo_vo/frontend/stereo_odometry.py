# stereo_vo/frontend/stereo_odometry.py
# This is the frame-pair orchestrator
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
from typing import Dict, Optional, Tuple

import numpy as np

from stereo_vo.types import (
    FrameSkipped, GeometryEstimationFailure, IDataProvider, InsufficientData,
    StereoFrame, assert_non_decreasing,
)
from stereo_vo.core.state import RigPose
from stereo_vo.core.propagation import propagate_rig
from stereo_vo.core.stereo.calib import CameraIntrinsics, StereoCalibration
from stereo_vo.core.stereo.stereo_types import VIEWS, CorrespondenceTable
from stereo_vo.core.stereo.tracker import FeatureTracker, TrackerParams
from stereo_vo.core.stereo.correspondence import prune_table_invisible, prune_table_zero
from stereo_vo.core.stereo.triangulation import TriangulationParams
from stereo_vo.core.geometry.fundamental import FundamentalParams, estimate_fundamental
from stereo_vo.core.geometry.normalize import normalize_points, undistort_normalize, undistort_pixels
from stereo_vo.core.geometry.essential import PoseSelectionParams
from stereo_vo.core.geometry.scale import ScaleParams
from stereo_vo.core.vision.pnp import PnPParams

from stereo_vo.frontend.strategies import FrameContext, MotionEstimate, make_strategy, run_branches

log = logging.getLogger(__name__)


@dataclass
class OdometryParams:
    methods: Tuple[str, ...] = ("decomposition", "pnp")
    primary: str = "decomposition"      # whose status and cloud a FrameResult reports
    min_correspondences: int = 8
    parallel_branches: bool = False     # left/right camera work on a 2-thread pool
    undistort: bool = False             # undistort pixels before F and normalization
    sample_colors: bool = True

    tracker: TrackerParams = field(default_factory=TrackerParams)
    fundamental: FundamentalParams = field(default_factory=FundamentalParams)
    pose: PoseSelectionParams = field(default_factory=PoseSelectionParams)
    scale: ScaleParams = field(default_factory=ScaleParams)
    pnp: PnPParams = field(default_factory=PnPParams)
    triangulation: TriangulationParams = field(default_factory=TriangulationParams)


@dataclass
class FrameResult:
    index: int                                  # frame k of the pair (k, k+1)
    status: str                                 # "ok" or FrameSkipped.status of the primary method
    poses: Dict[str, RigPose]                   # running pose per method after this frame
    estimates: Dict[str, MotionEstimate] = field(default_factory=dict)
    cloud: Optional[np.ndarray] = None          # (N,3) from the primary method
    colors: Optional[np.ndarray] = None         # (N,3) uint8 BGR, sampled in L1
    table: Optional[CorrespondenceTable] = None # F-inlier correspondences the cloud rows follow
    n_tracked: int = 0
    n_inliers: int = 0
    error: Optional[str] = None
    failures: Dict[str, str] = field(default_factory=dict)   # method -> status

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def sample_colors(image: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Pixel color at each (u, v), read as image[v, u]. Gray images are expanded to 3 channels."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    h, w = image.shape[:2]
    u = np.clip(np.rint(pts[:, 0]).astype(int), 0, w - 1)
    v = np.clip(np.rint(pts[:, 1]).astype(int), 0, h - 1)
    px = image[v, u]
    if px.ndim == 1:
        px = np.repeat(px[:, None], 3, axis=1)
    return px.astype(np.uint8)


class StereoOdometry:
    # Event-driven: either call process() with two frames, or attach a provider and call step()
    def __init__(
        self,
        calib: StereoCalibration,
        params: Optional[OdometryParams] = None,
        init_poses: Optional[Dict[str, RigPose]] = None,
        provider: Optional[IDataProvider] = None,
    ):
        self.calib = calib
        self.p = params or OdometryParams()
        if not self.p.methods:
            raise ValueError("at least one pose estimation method is required")
        if self.p.primary not in self.p.methods:
            raise ValueError(f"primary method {self.p.primary!r} is not in {self.p.methods}")
        if self.calib.extrinsics.baseline <= 0.0:
            raise ValueError("stereo extrinsics have a zero baseline, metric scale is unobservable")

        self.tracker = FeatureTracker(self.p.tracker)
        self.strategies = {
            name: make_strategy(name, self.p.pose, self.p.scale, self.p.pnp, self.p.triangulation)
            for name in self.p.methods
        }

        init_poses = init_poses or {}
        self.poses: Dict[str, RigPose] = {
            name: init_poses.get(name, RigPose.identity()) for name in self.p.methods
        }

        self.provider = provider
        self._prev_frame: Optional[StereoFrame] = None
        self._last_index: Optional[int] = None
        self._executor = (
            ThreadPoolExecutor(max_workers=2, thread_name_prefix="stereo-branch")
            if self.p.parallel_branches else None
        )

    # -----------------------------
    # Per-frame entry points
    # -----------------------------

    def process(self, index: int, frame_k: StereoFrame, frame_k1: StereoFrame) -> FrameResult:
        if not frame_k.is_complete() or not frame_k1.is_complete():
            return self._skipped(index, InsufficientData("missing or empty image"), n_tracked=0)

        table = self.tracker.track_four_views(frame_k.left, frame_k.right, frame_k1.left, frame_k1.right)
        result = self.estimate_from_correspondences(index, table)

        if self.p.sample_colors and result.table is not None and result.cloud is not None:
            result.colors = sample_colors(frame_k.left, result.table.view("L1"))
        return result

    def estimate_from_correspondences(self, index: int, table: CorrespondenceTable) -> FrameResult:
        n_tracked = len(table)
        try:
            ctx = self._prepare(index, table)
        except FrameSkipped as e:
            return self._skipped(index, e, n_tracked)

        estimates: Dict[str, MotionEstimate] = {}
        ctx.guesses = estimates             # filled as methods finish, in configured order
        failures: Dict[str, str] = {}
        errors: Dict[str, str] = {}
        for name, strategy in self.strategies.items():
            try:
                est = strategy.estimate(ctx)
            except FrameSkipped as e:
                failures[name] = e.status
                errors[name] = str(e)
                log.warning(f"[VO] frame {index}: {name} skipped ({e.status}): {e}")
                continue
            estimates[name] = est
            self.poses[name] = propagate_rig(self.poses[name], est.left, est.right, frame=index + 1)

        primary = estimates.get(self.p.primary)
        status = "ok" if primary is not None else failures[self.p.primary]
        if primary is not None:
            pos = self.poses[self.p.primary].left_position
            log.info(
                f"[VO] frame {index}: {len(ctx.table)}/{n_tracked} inliers, "
                f"left at ({pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f})"
            )

        return FrameResult(
            index=index,
            status=status,
            poses=dict(self.poses),
            estimates=estimates,
            cloud=None if primary is None else primary.cloud,
            table=ctx.table,
            n_tracked=n_tracked,
            n_inliers=len(ctx.table),
            error=errors.get(self.p.primary),
            failures=failures,
        )

    def step(self) -> Optional[FrameResult]:
        """Pull frames until a consecutive pair is available; None once the provider is exhausted."""
        if self.provider is None:
            raise RuntimeError("no provider attached")

        while self.provider.has_next():
            ev = self.provider.next_event()
            if ev.type != "stereo":
                continue

            frame = ev.to_frame()
            self._last_index = assert_non_decreasing(self._last_index, frame.index, "stereo")
            prev, self._prev_frame = self._prev_frame, frame
            if prev is None:
                continue
            return self.process(prev.index, prev, frame)

        return None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # -----------------------------
    # Shared stages (all methods)
    # -----------------------------

    def _prepare(self, index: int, table: CorrespondenceTable) -> FrameContext:
        w, h = self.calib.image_size
        table = prune_table_invisible(table, w, h)
        self._require(len(table), "visible correspondences")

        geo = {view: self._geometry_pixels(view, table.view(view)) for view in VIEWS}
        f_left, f_right = run_branches(
            self._executor, estimate_fundamental,
            (geo["L1"], geo["L2"]), (geo["R1"], geo["R2"]),
            params=self.p.fundamental,
        )
        if not f_left.success or not f_right.success:
            raise GeometryEstimationFailure(
                f"fundamental matrix failed (left={f_left.success}, right={f_right.success})"
            )

        # the table keeps the raw pixels; a row is dropped when either camera flags it
        table = table.invalidate(("L1", "L2"), ~f_left.mask).invalidate(("R1", "R2"), ~f_right.mask)
        table = prune_table_zero(table)
        self._require(len(table), "epipolar inliers")
        log.debug(f"[F] frame {index}: inliers left={f_left.n_inliers} right={f_right.n_inliers} both={len(table)}")

        normalized = {view: self._normalize(view, table.view(view)) for view in VIEWS}
        return FrameContext(
            index=index,
            table=table,
            normalized=normalized,
            F={"left": f_left.F, "right": f_right.F},
            calib=self.calib,
            undistort=self.p.undistort,
            executor=self._executor,
        )

    def _camera(self, view: str) -> CameraIntrinsics:
        return self.calib.left if view.startswith("L") else self.calib.right

    def _geometry_pixels(self, view: str, pts: np.ndarray) -> np.ndarray:
        # F has to live in the same (undistorted) pixel space the normalized rays come from
        cam = self._camera(view)
        if self.p.undistort and cam.has_distortion():
            return undistort_pixels(cam.K, cam.dist, pts)
        return pts

    def _normalize(self, view: str, pts: np.ndarray) -> np.ndarray:
        cam = self._camera(view)
        if self.p.undistort:
            return undistort_normalize(cam.K, cam.dist, pts)
        return normalize_points(cam.K_inv, pts)

    def _require(self, n: int, what: str) -> None:
        if n < self.p.min_correspondences:
            raise InsufficientData(f"only {n} {what} (need {self.p.min_correspondences})")

    def _skipped(self, index: int, err: FrameSkipped, n_tracked: int) -> FrameResult:
        log.warning(f"[VO] frame {index} skipped ({err.status}): {err}")
        return FrameResult(
            index=index,
            status=err.status,
            poses=dict(self.poses),
            n_tracked=n_tracked,
            error=str(err),
            failures={name: err.status for name in self.p.methods},
        )
