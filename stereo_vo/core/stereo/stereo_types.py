# core data types for the four-view stereo correspondences
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple
import numpy as np

# left/right image at time k (1) and k+1 (2)
VIEWS: Tuple[str, ...] = ("L1", "R1", "L2", "R2")


@dataclass(frozen=True)
class TrackResult:
    points: np.ndarray   # (N,2) float64; (0,0) where not found
    found: np.ndarray    # (N,) bool
    error: np.ndarray    # (N,) float32 LK error / min eigenvalue

    @staticmethod
    def empty() -> "TrackResult":
        return TrackResult(np.zeros((0, 2)), np.zeros(0, dtype=bool), np.zeros(0, dtype=np.float32))

    def __len__(self) -> int:
        return self.points.shape[0]


@dataclass
class CorrespondenceTable:
    """
    Struct-of-arrays over correspondences. Row i of every view column belongs to
    the same physical point; ids stay attached to the row through every filter.
    """
    ids: np.ndarray                                             # (N,) int64
    points: Dict[str, np.ndarray] = field(default_factory=dict) # view -> (N,2)
    valid: Dict[str, np.ndarray] = field(default_factory=dict)  # view -> (N,) bool

    def __post_init__(self):
        n = self.ids.shape[0]
        for name, pts in self.points.items():
            if pts.shape != (n, 2):
                raise ValueError(f"view {name}: expected shape ({n}, 2), got {pts.shape}")
            if name not in self.valid:
                self.valid[name] = np.ones(n, dtype=bool)
        for name, flags in self.valid.items():
            if name not in self.points or flags.shape != (n,):
                raise ValueError(f"view {name}: validity flags do not match points")

    @staticmethod
    def from_views(points: Dict[str, np.ndarray],
                   valid: Optional[Dict[str, np.ndarray]] = None,
                   ids: Optional[np.ndarray] = None) -> "CorrespondenceTable":
        pts = {k: np.asarray(v, dtype=np.float64).reshape(-1, 2) for k, v in points.items()}
        n = next(iter(pts.values())).shape[0] if pts else 0
        flags = {k: np.asarray(v, dtype=bool).reshape(-1) for k, v in (valid or {}).items()}
        if ids is None:
            ids = np.arange(n, dtype=np.int64)
        return CorrespondenceTable(ids=np.asarray(ids, dtype=np.int64), points=pts, valid=flags)

    def __len__(self) -> int:
        return int(self.ids.shape[0])

    @property
    def views(self) -> Tuple[str, ...]:
        return tuple(self.points.keys())

    def view(self, name: str) -> np.ndarray:
        return self.points[name]

    def all_valid(self) -> np.ndarray:
        keep = np.ones(len(self), dtype=bool)
        for flags in self.valid.values():
            keep &= flags
        return keep

    def select(self, keep: np.ndarray) -> "CorrespondenceTable":
        """Stable boolean-mask filter applied to every column at once."""
        keep = np.asarray(keep, dtype=bool)
        if keep.shape != (len(self),):
            raise ValueError(f"mask of shape {keep.shape} for table of length {len(self)}")
        return CorrespondenceTable(
            ids=self.ids[keep],
            points={k: v[keep] for k, v in self.points.items()},
            valid={k: v[keep] for k, v in self.valid.items()},
        )

    def invalidate(self, views: Iterable[str], bad: np.ndarray) -> "CorrespondenceTable":
        bad = np.asarray(bad, dtype=bool)
        valid = dict(self.valid)
        for name in views:
            valid[name] = valid[name] & ~bad
        return CorrespondenceTable(ids=self.ids, points=dict(self.points), valid=valid)
