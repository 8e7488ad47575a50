# Implementation: Shi-Tomasi + pyramidal LK tracker over the four stereo views
from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Optional, Tuple
import numpy as np
import cv2

from .stereo_types import CorrespondenceTable, TrackResult

log = logging.getLogger(__name__)


@dataclass
class TrackerParams:
    max_corners: int = 500
    quality_level: float = 0.001    # relative to the strongest corner
    min_distance: float = 5.0       # pixels
    block_size: int = 3
    lk_win: Tuple[int, int] = (15, 15)
    lk_max_level: int = 10
    lk_criteria: Tuple[int, int, float] = (cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, 20, 0.3)
    lk_flags: int = cv2.OPTFLOW_LK_GET_MIN_EIGENVALS
    min_eig_threshold: float = 1e-4
    fb_thresh: Optional[float] = None   # forward-backward px error, None disables the check


def to_gray(img: np.ndarray) -> np.ndarray:
    if img.ndim == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    return img


class FeatureTracker:
    """Stateless: every call re-seeds from the reference image."""

    def __init__(self, params: Optional[TrackerParams] = None):
        self.p = params or TrackerParams()

    def detect(self, image: np.ndarray,
               max_count: Optional[int] = None,
               min_quality: Optional[float] = None,
               min_separation: Optional[float] = None) -> np.ndarray:
        max_count = self.p.max_corners if max_count is None else max_count
        min_quality = self.p.quality_level if min_quality is None else min_quality
        min_separation = self.p.min_distance if min_separation is None else min_separation

        corners = cv2.goodFeaturesToTrack(
            to_gray(image), maxCorners=max_count, qualityLevel=min_quality,
            minDistance=min_separation, blockSize=self.p.block_size
        )
        if corners is None:
            return np.zeros((0, 2), dtype=np.float64)
        return corners.reshape(-1, 2).astype(np.float64)

    def track(self, source: np.ndarray, target: np.ndarray, seeds: np.ndarray) -> TrackResult:
        seeds = np.asarray(seeds, dtype=np.float64).reshape(-1, 2)
        if seeds.shape[0] == 0:
            return TrackResult.empty()

        src, dst = to_gray(source), to_gray(target)
        pts0 = seeds.astype(np.float32).reshape(-1, 1, 2)

        pts1, st, err = cv2.calcOpticalFlowPyrLK(
            src, dst, pts0, None,
            winSize=self.p.lk_win, maxLevel=self.p.lk_max_level, criteria=self.p.lk_criteria,
            flags=self.p.lk_flags, minEigThreshold=self.p.min_eig_threshold
        )
        pts1 = pts1.reshape(-1, 2).astype(np.float64)
        found = (st.reshape(-1) == 1) & np.all(np.isfinite(pts1), axis=1)

        if self.p.fb_thresh is not None and np.any(found):
            # Forward-backward check
            pts0_back, st_back, _ = cv2.calcOpticalFlowPyrLK(
                dst, src, pts1.astype(np.float32).reshape(-1, 1, 2), None,
                winSize=self.p.lk_win, maxLevel=self.p.lk_max_level, criteria=self.p.lk_criteria
            )
            fb = np.linalg.norm(pts0_back.reshape(-1, 2) - seeds, axis=1)
            found &= (st_back.reshape(-1) == 1) & (fb <= self.p.fb_thresh)

        # not-found points keep their row but lose their coordinate
        pts1[~found] = 0.0
        return TrackResult(points=pts1, found=found, error=err.reshape(-1))

    def track_four_views(self, left1: np.ndarray, right1: np.ndarray,
                         left2: np.ndarray, right2: np.ndarray) -> CorrespondenceTable:
        """
        Seed in L1 and follow the seeds into R1 and L2, then carry the R1 positions into R2.
        Returns the unpruned table; validity flags mark what LK could not find.
        """
        seeds = self.detect(left1)
        if seeds.shape[0] == 0:
            log.debug("[Track] no features in reference image")
            return CorrespondenceTable.from_views({v: np.zeros((0, 2)) for v in ("L1", "R1", "L2", "R2")})

        r1 = self.track(left1, right1, seeds)
        l2 = self.track(left1, left2, seeds)
        r2 = self.track(right1, right2, r1.points)

        table = CorrespondenceTable.from_views(
            points={"L1": seeds, "R1": r1.points, "L2": l2.points, "R2": r2.points},
            valid={
                "L1": np.ones(seeds.shape[0], dtype=bool),
                "R1": r1.found,
                "L2": l2.found,
                "R2": r2.found & r1.found,
            },
        )
        log.debug(
            f"[Track] seeds={seeds.shape[0]} found R1={int(r1.found.sum())} "
            f"L2={int(l2.found.sum())} R2={int(table.valid['R2'].sum())}"
        )
        return table
