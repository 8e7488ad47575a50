import numpy as np
import unittest

from stereo_vo.core.geometry.essential import (
    check_coherent_rotation, decompose_essential, essential_from_fundamental, select_valid_pose, skew,
)
from stereo_vo.core.geometry.fundamental import estimate_fundamental
from scene_builder import build_scene, make_calib, rot_x, rot_y, rot_z


class CoherentRotationTests(unittest.TestCase):
    def test_reflection_is_rejected(self):
        self.assertFalse(check_coherent_rotation(np.diag([1.0, 1.0, -1.0])))

    def test_det_within_tolerance_is_accepted(self):
        R = np.eye(3) * (1.0 + 1e-9) ** (1.0 / 3.0)
        self.assertTrue(check_coherent_rotation(R))
        R = np.eye(3) * (1.0 - 1e-9) ** (1.0 / 3.0)
        self.assertTrue(check_coherent_rotation(R))

    def test_det_outside_tolerance_is_rejected(self):
        R = np.eye(3) * (1.0 + 1e-5) ** (1.0 / 3.0)
        self.assertFalse(check_coherent_rotation(R))

    def test_proper_rotation(self):
        self.assertTrue(check_coherent_rotation(rot_z(0.3) @ rot_x(-0.2)))


class DecompositionTests(unittest.TestCase):
    def test_candidates_contain_true_motion(self):
        R = rot_y(0.1) @ rot_x(0.05)
        t = np.array([0.3, -0.1, 0.9])
        t_unit = t / np.linalg.norm(t)
        E = skew(t) @ R

        R1, R2, t1, t2 = decompose_essential(E)

        # the sign of E is free, so candidates may come out as -R
        rotations = [R1, R2, -R1, -R2]
        self.assertTrue(any(np.allclose(Rc, R, atol=1e-9) for Rc in rotations))
        self.assertTrue(np.allclose(t1, t_unit, atol=1e-9) or np.allclose(t2, t_unit, atol=1e-9))
        np.testing.assert_allclose(t1, -t2)

    def test_essential_from_fundamental(self):
        K = make_calib().left.K
        R = rot_y(0.05)
        t = np.array([1.0, 0.0, 0.2])
        E = skew(t) @ R
        F = np.linalg.inv(K).T @ E @ np.linalg.inv(K)
        np.testing.assert_allclose(essential_from_fundamental(F, K), E, atol=1e-9)

    def test_select_valid_pose_on_normalized_points(self):
        scene = build_scene(n=60, seed=7)
        t_unit = scene.t / np.linalg.norm(scene.t)

        sel = select_valid_pose(skew(scene.t) @ scene.R, scene.normalized["L1"], scene.normalized["L2"])

        self.assertTrue(sel.success)
        np.testing.assert_allclose(sel.R, scene.R, atol=1e-6)
        np.testing.assert_allclose(sel.t, t_unit, atol=1e-6)
        np.testing.assert_allclose(sel.cloud, scene.X / np.linalg.norm(scene.t), atol=1e-6)
        self.assertGreaterEqual(sel.front_ratio, 0.75)

    def test_negated_essential_gives_same_pose(self):
        scene = build_scene(n=40, seed=8)
        sel = select_valid_pose(-skew(scene.t) @ scene.R, scene.normalized["L1"], scene.normalized["L2"])
        self.assertTrue(sel.success)
        np.testing.assert_allclose(sel.R, scene.R, atol=1e-6)

    def test_pure_x_translation_from_pixels(self):
        calib = make_calib()
        K = calib.left.K
        scene = build_scene(n=12, R=np.eye(3), t=np.array([0.5, 0.0, 0.0]), seed=9, calib=calib)

        f = estimate_fundamental(scene.pixels["L1"], scene.pixels["L2"])
        self.assertTrue(f.success)
        E = essential_from_fundamental(f.F, K)
        sel = select_valid_pose(E, scene.pixels["L1"], scene.pixels["L2"], K=K)

        self.assertTrue(sel.success)
        np.testing.assert_allclose(sel.R, np.eye(3), atol=1e-3)
        np.testing.assert_allclose(sel.t, [1.0, 0.0, 0.0], atol=1e-3)

    def test_degenerate_essential_fails(self):
        scene = build_scene(n=20, seed=10)
        E = np.diag([1.0, 0.1, 0.0])
        sel = select_valid_pose(E, scene.normalized["L1"], scene.normalized["L2"])
        self.assertFalse(sel.success)
        self.assertEqual(sel.cloud.shape, (0, 3))

    def test_point_count_mismatch_fails(self):
        scene = build_scene(n=30, seed=11)
        sel = select_valid_pose(skew(scene.t) @ scene.R, scene.normalized["L1"], scene.normalized["L2"][:20])
        self.assertFalse(sel.success)


if __name__ == "__main__":
    unittest.main()
