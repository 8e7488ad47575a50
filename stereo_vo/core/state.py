# stereo_vo/core/state.py
# Running pose of the rig: world-from-camera for each camera
from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence
import numpy as np


@dataclass(frozen=True)
class RigPose:
    frame: int           # index of the last integrated frame
    left: np.ndarray     # (4,4) world <- left camera
    right: np.ndarray    # (4,4) world <- right camera

    @staticmethod
    def identity(frame: int = 0) -> "RigPose":
        return RigPose(frame=frame, left=np.eye(4), right=np.eye(4))

    @property
    def left_position(self) -> np.ndarray:
        return self.left[:3, 3].copy()

    @property
    def right_position(self) -> np.ndarray:
        return self.right[:3, 3].copy()

    def to_checkpoint(self) -> list[float]:
        """16 floats per camera, row-major, left then right."""
        return self.left.reshape(-1).tolist() + self.right.reshape(-1).tolist()

    @staticmethod
    def from_checkpoint(values: Sequence[float], frame: int = 0) -> "RigPose":
        arr = np.asarray(values, dtype=np.float64)
        if arr.size != 32:
            raise ValueError(f"expected 32 values, got {arr.size}")
        return RigPose(frame=frame, left=arr[:16].reshape(4, 4), right=arr[16:].reshape(4, 4))
