# stereo_vo/core/stereo/calib.py
'''
Calibration containers for the stereo rig.
The numbers themselves come from outside (YAML, hardcoded constants in a script, ...);
the helpers below only turn raw values into K, D and the cam0 -> cam1 extrinsics.
'''
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple
import numpy as np


def _frozen(a: np.ndarray, shape: Tuple[int, ...]) -> np.ndarray:
    out = np.array(a, dtype=np.float64).reshape(shape)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class CameraIntrinsics:
    K: np.ndarray                       # (3,3)
    dist: Optional[np.ndarray] = None   # (5,) k1 k2 p1 p2 k3

    def __post_init__(self):
        object.__setattr__(self, "K", _frozen(self.K, (3, 3)))
        dist = np.zeros(5) if self.dist is None else np.asarray(self.dist, dtype=np.float64).ravel()
        object.__setattr__(self, "dist", _frozen(dist, dist.shape))
        object.__setattr__(self, "_K_inv", _frozen(np.linalg.inv(self.K), (3, 3)))

    @property
    def K_inv(self) -> np.ndarray:
        return self._K_inv

    def has_distortion(self) -> bool:
        return bool(np.any(self.dist != 0.0))


@dataclass(frozen=True)
class StereoExtrinsics:
    R: np.ndarray   # (3,3) left -> right rotation:  X_R = R X_L + t
    t: np.ndarray   # (3,)

    def __post_init__(self):
        object.__setattr__(self, "R", _frozen(self.R, (3, 3)))
        object.__setattr__(self, "t", _frozen(self.t, (3,)))

    @property
    def P(self) -> np.ndarray:
        """Combined 3x4 [R | t] of the right camera in left-camera normalized space."""
        return np.hstack([self.R, self.t.reshape(3, 1)])

    @property
    def baseline(self) -> float:
        return float(np.linalg.norm(self.t))

    def to_right(self, X_left: np.ndarray) -> np.ndarray:
        """(N,3) points in left-camera frame -> right-camera frame."""
        return X_left @ self.R.T + self.t


@dataclass(frozen=True)
class StereoCalibration:
    left: CameraIntrinsics
    right: CameraIntrinsics
    extrinsics: StereoExtrinsics
    image_size: Tuple[int, int]   # (w,h)

    @property
    def P0(self) -> np.ndarray:
        return np.hstack([np.eye(3), np.zeros((3, 1))])


def K_from_intrinsics(fu: float, fv: float, cu: float, cv: float) -> np.ndarray:
    return np.array([[fu, 0.0, cu],
                     [0.0, fv, cv],
                     [0.0, 0.0, 1.0]], dtype=np.float64)


def D_from_radtan4(k1: float, k2: float, p1: float, p2: float) -> np.ndarray:
    return np.array([k1, k2, p1, p2, 0.0], dtype=np.float64)


def T_from_yaml_data(data_list: list[float]) -> np.ndarray:
    return np.array(data_list, dtype=np.float64).reshape(4, 4)


def T_cam0_cam1_from_T_BS(T_BS0: np.ndarray, T_BS1: np.ndarray) -> np.ndarray:
    # maps cam0 coordinates to cam1 coordinates
    return np.linalg.inv(T_BS1) @ T_BS0


def extrinsics_from_T(T_cam0_cam1: np.ndarray) -> StereoExtrinsics:
    return StereoExtrinsics(R=T_cam0_cam1[:3, :3], t=T_cam0_cam1[:3, 3])
