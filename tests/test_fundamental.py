import numpy as np
import unittest

from stereo_vo.core.geometry.fundamental import (
    FundamentalParams, epipolar_distances, estimate_fundamental, is_collinear,
)
from scene_builder import IMG_H, IMG_W, build_scene


class FundamentalEstimationTests(unittest.TestCase):
    def test_fewer_than_eight_points_fails_without_raising(self):
        scene = build_scene(n=7)
        res = estimate_fundamental(scene.pixels["L1"], scene.pixels["L2"])

        self.assertFalse(res.success)
        self.assertIsNone(res.F)
        self.assertEqual(res.n_inliers, 0)
        self.assertEqual(res.inliers_a.shape, (7, 2))

    def test_size_mismatch_fails(self):
        scene = build_scene(n=20)
        res = estimate_fundamental(scene.pixels["L1"], scene.pixels["L2"][:15])
        self.assertFalse(res.success)

    def test_collinear_points_fail(self):
        a = np.column_stack([np.linspace(50, 600, 12), np.linspace(40, 400, 12)])
        b = a + [5.0, 1.0]
        self.assertTrue(is_collinear(a))
        self.assertFalse(estimate_fundamental(a, b).success)

    def test_noiseless_scene_is_all_inliers(self):
        scene = build_scene(n=50, seed=3)
        a, b = scene.pixels["L1"], scene.pixels["L2"]

        res = estimate_fundamental(a, b)

        self.assertTrue(res.success)
        self.assertEqual(res.n_inliers, 50)
        self.assertLess(float(epipolar_distances(res.F, a, b).max()), 1e-3)
        np.testing.assert_array_equal(res.inliers_a, a)

    def test_ransac_separates_outliers(self):
        # under 10% of the matches land anywhere in the image; inliers carry 0.2 px noise
        n_in, n_out = 70, 6
        kept_inliers = 0
        rejected_outliers = 0
        for trial in range(10):
            rng = np.random.default_rng(100 + trial)
            scene = build_scene(n=n_in + n_out, seed=trial, noise_px=0.2)
            a = scene.pixels["L1"].copy()
            b = scene.pixels["L2"].copy()
            is_out = np.zeros(n_in + n_out, dtype=bool)
            is_out[rng.choice(n_in + n_out, n_out, replace=False)] = True
            b[is_out] = rng.uniform([0.0, 0.0], [IMG_W, IMG_H], size=(n_out, 2))

            res = estimate_fundamental(a, b, FundamentalParams(ransac_threshold_px=1.0))

            self.assertTrue(res.success)
            kept_inliers += int(np.sum(res.mask[~is_out]))
            rejected_outliers += int(np.sum(~res.mask[is_out]))

        self.assertGreaterEqual(kept_inliers / (10 * n_in), 0.9)
        self.assertGreaterEqual(rejected_outliers / (10 * n_out), 0.9)

    def test_outliers_are_zeroed_in_place(self):
        scene = build_scene(n=40, seed=5)
        a = scene.pixels["R1"].copy()
        b = scene.pixels["R2"].copy()
        b[[3, 17]] += [40.0, -35.0]

        res = estimate_fundamental(a, b)

        self.assertTrue(res.success)
        self.assertEqual(res.inliers_a.shape, a.shape)
        np.testing.assert_array_equal(res.inliers_a[[3, 17]], np.zeros((2, 2)))
        np.testing.assert_array_equal(res.inliers_b[[3, 17]], np.zeros((2, 2)))
        keep = np.ones(40, dtype=bool)
        keep[[3, 17]] = False
        np.testing.assert_array_equal(res.inliers_a[keep], a[keep])
        np.testing.assert_array_equal(res.mask, keep)


if __name__ == "__main__":
    unittest.main()
