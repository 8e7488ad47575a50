# stereo_vo/core/propagation.py
import numpy as np

from stereo_vo.core.state import RigPose


def motion_to_delta(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    delta = np.eye(4, dtype=np.float64)
    delta[:3, :3] = R
    delta[:3, 3] = np.asarray(t, dtype=np.float64).ravel()
    return delta


def invert_motion(R: np.ndarray, t: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    t = np.asarray(t, dtype=np.float64).ravel()
    return R.T, -R.T @ t


def accumulate(pose: np.ndarray, R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Right-multiply the running 4x4 pose by the homogeneous delta built from (R, t)."""
    return pose @ motion_to_delta(R, t)


def propagate_rig(x: RigPose, left_motion, right_motion, frame: int) -> RigPose:
    """
    left_motion / right_motion: (R, t) with X_{k+1} = R X_k + t in that camera's frame.
    The camera at k+1 sits at the inverse of that motion in the camera frame at k,
    so the inverse is what gets composed onto the world <- camera pose.
    """
    left = accumulate(x.left, *invert_motion(*left_motion))
    right = accumulate(x.right, *invert_motion(*right_motion))
    return RigPose(frame=frame, left=left, right=right)
