'''
Lockstep pruning of parallel point sequences.
Index k of every group is one correspondence, so a row is either kept in all groups or dropped from all.
Two conventions for "not trackable":
  - bounds: the point sits on/outside the image border (tracking output)
  - zero:   the point is exactly (0,0) (LK not-found / RANSAC outlier sentinel)
'''
from __future__ import annotations
from typing import Tuple
import numpy as np

from .stereo_types import CorrespondenceTable


def _as_groups(groups) -> list[np.ndarray]:
    arrs = [np.asarray(g, dtype=np.float64).reshape(-1, 2) for g in groups]
    if arrs and any(a.shape[0] != arrs[0].shape[0] for a in arrs):
        raise ValueError(f"groups have different lengths: {[a.shape[0] for a in arrs]}")
    return arrs


def visible_mask(groups, width: int, height: int) -> np.ndarray:
    arrs = _as_groups(groups)
    if not arrs:
        return np.zeros(0, dtype=bool)
    keep = np.ones(arrs[0].shape[0], dtype=bool)
    for a in arrs:
        x, y = a[:, 0], a[:, 1]
        inside = np.isfinite(x) & np.isfinite(y)
        inside &= (x > 1) & (y > 1)
        inside &= (x < width) & (y < height)
        keep &= inside
    return keep


def nonzero_mask(groups) -> np.ndarray:
    arrs = _as_groups(groups)
    if not arrs:
        return np.zeros(0, dtype=bool)
    keep = np.ones(arrs[0].shape[0], dtype=bool)
    for a in arrs:
        keep &= ~((a[:, 0] == 0.0) & (a[:, 1] == 0.0))
    return keep


def prune_invisible(*groups: np.ndarray, width: int, height: int) -> Tuple[np.ndarray, ...]:
    keep = visible_mask(groups, width, height)
    return tuple(a[keep] for a in _as_groups(groups))


def prune_zero(*groups: np.ndarray) -> Tuple[np.ndarray, ...]:
    keep = nonzero_mask(groups)
    return tuple(a[keep] for a in _as_groups(groups))


def prune_table_invisible(table: CorrespondenceTable, width: int, height: int) -> CorrespondenceTable:
    keep = visible_mask(table.points.values(), width, height) & table.all_valid()
    return table.select(keep)


def prune_table_zero(table: CorrespondenceTable) -> CorrespondenceTable:
    keep = nonzero_mask(table.points.values()) & table.all_valid()
    return table.select(keep)
