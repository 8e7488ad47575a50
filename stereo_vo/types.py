from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Literal
import numpy as np


# -----------------------------
# Core sensor samples
# -----------------------------

@dataclass(frozen=True)
class StereoFrame:
    index: int
    left: Optional[np.ndarray]   # HxW (uint8) or HxWx3, None if it could not be read
    right: Optional[np.ndarray]  # HxW (uint8) or HxWx3, None if it could not be read
    t_ns: Optional[int] = None   # optional, if the source has timestamps

    def is_complete(self) -> bool:
        return _has_pixels(self.left) and _has_pixels(self.right)


def _has_pixels(img: Optional[np.ndarray]) -> bool:
    return img is not None and img.size > 0


# -----------------------------
# Raw events from dataset/provider
# -----------------------------

@dataclass(frozen=True)
class RawStereoEvent:
    type: Literal["stereo"]
    index: int
    left: Optional[np.ndarray]
    right: Optional[np.ndarray]
    t_ns: Optional[int] = None

    def to_frame(self) -> StereoFrame:
        return StereoFrame(index=self.index, left=self.left, right=self.right, t_ns=self.t_ns)


# -----------------------------
# Provider interface (dataset-agnostic)
# -----------------------------

class IDataProvider(Protocol):
    """Yields RawStereoEvent in non-decreasing frame index order."""
    def has_next(self) -> bool: ...
    def next_event(self) -> RawStereoEvent: ...


# -----------------------------
# Frame-level failures
# -----------------------------

class FrameSkipped(RuntimeError):
    """A frame pair could not be used; the trajectory is left unchanged."""
    status = "skipped"


class InsufficientData(FrameSkipped):
    # too few correspondences, no features, missing images
    status = "insufficient_data"


class GeometryEstimationFailure(FrameSkipped):
    # fundamental matrix / PnP could not be estimated robustly
    status = "geometry_failure"


class PoseAmbiguityFailure(FrameSkipped):
    # none of the four essential-matrix decompositions is physically valid
    status = "pose_ambiguity"


# -----------------------------
# Utility: strict ordering check
# -----------------------------

class OrderingError(RuntimeError):
    pass


def assert_non_decreasing(prev: Optional[int], new: int, name: str) -> int:
    if prev is not None and new < prev:
        raise OrderingError(f"{name}: frame index decreased ({new} < {prev})")
    return new
