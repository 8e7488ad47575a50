import numpy as np
import unittest

from stereo_vo.core.propagation import accumulate, invert_motion, motion_to_delta, propagate_rig
from stereo_vo.core.state import RigPose
from stereo_vo.core.vision.pnp import solve_pnp
from scene_builder import build_scene, rot_x, rot_y, rot_z


class AccumulateTests(unittest.TestCase):
    def test_accumulate_right_multiplies_delta(self):
        pose = motion_to_delta(rot_z(0.4), np.array([1.0, 2.0, 3.0]))
        R = rot_x(0.1)
        t = np.array([0.5, -0.2, 0.0])

        out = accumulate(pose, R, t)

        np.testing.assert_allclose(out, pose @ motion_to_delta(R, t))
        np.testing.assert_allclose(out[3], [0.0, 0.0, 0.0, 1.0])

    def test_accumulate_identity(self):
        R = rot_y(0.2)
        t = np.array([0.0, 1.0, 0.0])
        np.testing.assert_allclose(accumulate(np.eye(4), R, t), motion_to_delta(R, t))

    def test_invert_motion(self):
        R = rot_y(0.3) @ rot_x(0.1)
        t = np.array([0.2, 0.1, -0.4])
        Ri, ti = invert_motion(R, t)
        np.testing.assert_allclose(motion_to_delta(R, t) @ motion_to_delta(Ri, ti), np.eye(4), atol=1e-12)

    def test_propagate_rig_tracks_camera_centers(self):
        R = rot_y(0.05)
        t = np.array([0.0, 0.0, -1.0])      # points come 1 m closer: the camera moved forward
        x = RigPose.identity()

        for k in range(3):
            x = propagate_rig(x, (R, t), (R, t), frame=k + 1)

        self.assertEqual(x.frame, 3)
        step = -R.T @ t
        expected = step + R.T @ step + R.T @ R.T @ step
        np.testing.assert_allclose(x.left_position, expected, atol=1e-12)
        np.testing.assert_allclose(x.left[:3, :3], (R.T @ R.T @ R.T), atol=1e-12)


class CheckpointTests(unittest.TestCase):
    def test_round_trip(self):
        x = RigPose(frame=5,
                    left=motion_to_delta(rot_x(0.1), np.array([1.0, 2.0, 3.0])),
                    right=motion_to_delta(rot_y(0.2), np.array([1.1, 2.0, 3.0])))

        values = x.to_checkpoint()
        self.assertEqual(len(values), 32)

        y = RigPose.from_checkpoint(values, frame=5)
        np.testing.assert_allclose(y.left, x.left)
        np.testing.assert_allclose(y.right, x.right)
        self.assertEqual(y.frame, 5)

    def test_wrong_size_raises(self):
        with self.assertRaises(ValueError):
            RigPose.from_checkpoint([0.0] * 16)


class PnPTests(unittest.TestCase):
    def test_recovers_motion(self):
        scene = build_scene(n=40, seed=20)
        K = scene.calib.left.K

        res = solve_pnp(None, K, scene.X, scene.pixels["L2"])

        self.assertTrue(res.success)
        np.testing.assert_allclose(res.R, scene.R, atol=1e-5)
        np.testing.assert_allclose(res.t, scene.t, atol=1e-5)
        self.assertGreaterEqual(len(res.inliers), 36)

    def test_with_initial_guess(self):
        scene = build_scene(n=30, seed=21)
        guess = np.hstack([np.eye(3), np.zeros((3, 1))])

        res = solve_pnp(guess, scene.calib.left.K, scene.X, scene.pixels["L2"])

        self.assertTrue(res.success)
        np.testing.assert_allclose(res.t, scene.t, atol=1e-4)

    def test_too_few_points(self):
        scene = build_scene(n=4, seed=22)
        res = solve_pnp(None, scene.calib.left.K, scene.X, scene.pixels["L2"])
        self.assertFalse(res.success)
        self.assertIsNone(res.R)

    def test_count_mismatch(self):
        scene = build_scene(n=20, seed=23)
        res = solve_pnp(None, scene.calib.left.K, scene.X, scene.pixels["L2"][:10])
        self.assertFalse(res.success)


if __name__ == "__main__":
    unittest.main()
