from __future__ import annotations

from pathlib import Path
import logging
from typing import Optional

import numpy as np
import cv2

from stereo_vo.types import (
    IDataProvider,
    RawStereoEvent,
    assert_non_decreasing,
)

log = logging.getLogger(__name__)


class StereoSequenceProvider(IDataProvider):
    """
    Numbered left/right image pairs on disk, e.g. <root>/left/12_l.jpg and <root>/right/12_r.jpg.
    With last=None the sequence ends at the first index whose left and right files are both missing.
    """
    def __init__(
        self,
        root: str | Path,
        left_pattern: str = "left/{index}_l.jpg",
        right_pattern: str = "right/{index}_r.jpg",
        first: int = 0,
        last: Optional[int] = None,
    ):
        self.root = Path(root)
        self.left_pattern = left_pattern
        self.right_pattern = right_pattern
        self.first = first
        self.last = last

        self._i = first
        self._last_index: Optional[int] = None

    def has_next(self) -> bool:
        if self.last is not None:
            return self._i <= self.last
        return self.left_path(self._i).exists() or self.right_path(self._i).exists()

    def next_event(self) -> RawStereoEvent:
        if not self.has_next():
            raise StopIteration

        index = self._i
        self._i += 1
        left = self._read_gray(self.left_path(index))
        right = self._read_gray(self.right_path(index))

        self._last_index = assert_non_decreasing(self._last_index, index, "StereoSequenceProvider")
        return RawStereoEvent(type="stereo", index=index, left=left, right=right)

    # ---------- helpers ----------

    def left_path(self, index: int) -> Path:
        return self.root / self.left_pattern.format(index=index)

    def right_path(self, index: int) -> Path:
        return self.root / self.right_pattern.format(index=index)

    def _read_gray(self, path: Path) -> Optional[np.ndarray]:
        img = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if img is None:
            # the frame pair gets skipped downstream, the sequence keeps going
            log.warning(f"[Provider] failed to read image: {path}")
        return img
