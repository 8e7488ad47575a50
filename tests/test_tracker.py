import numpy as np
import unittest
import cv2

from stereo_vo.core.stereo.tracker import FeatureTracker, TrackerParams, to_gray


def _texture(seed=0, w=640, h=480):
    rng = np.random.default_rng(seed)
    img = rng.integers(0, 256, size=(h, w)).astype(np.uint8)
    return cv2.GaussianBlur(img, (0, 0), 2.0)


def _shift(img, dx, dy):
    M = np.array([[1.0, 0.0, dx], [0.0, 1.0, dy]])
    return cv2.warpAffine(img, M, (img.shape[1], img.shape[0]), flags=cv2.INTER_LINEAR,
                          borderMode=cv2.BORDER_REFLECT)


def _interior(pts, w, h, margin=30):
    return (pts[:, 0] > margin) & (pts[:, 0] < w - margin) & (pts[:, 1] > margin) & (pts[:, 1] < h - margin)


class FeatureTrackerTests(unittest.TestCase):
    def test_detect_respects_limits(self):
        img = _texture()
        tracker = FeatureTracker()

        pts = tracker.detect(img, max_count=50, min_quality=0.01, min_separation=10.0)

        self.assertEqual(pts.shape[1], 2)
        self.assertGreater(len(pts), 0)
        self.assertLessEqual(len(pts), 50)
        d = np.linalg.norm(pts[:, None, :] - pts[None, :, :], axis=2)
        d[np.arange(len(pts)), np.arange(len(pts))] = np.inf
        self.assertGreaterEqual(d.min(), 10.0 - 1e-6)

    def test_detect_on_blank_image_returns_empty(self):
        pts = FeatureTracker().detect(np.zeros((480, 640), dtype=np.uint8))
        self.assertEqual(pts.shape, (0, 2))

    def test_track_recovers_shift(self):
        src = _texture(1)
        dst = _shift(src, 3.0, 2.0)
        tracker = FeatureTracker()

        seeds = tracker.detect(src, max_count=200)
        res = tracker.track(src, dst, seeds)

        self.assertEqual(len(res), len(seeds))
        ok = res.found & _interior(seeds, src.shape[1], src.shape[0])
        self.assertGreater(ok.sum(), 0.8 * _interior(seeds, src.shape[1], src.shape[0]).sum())
        err = np.linalg.norm(res.points[ok] - (seeds[ok] + [3.0, 2.0]), axis=1)
        self.assertLess(float(np.median(err)), 0.1)
        # rows that were not found carry the zero sentinel
        np.testing.assert_array_equal(res.points[~res.found], np.zeros((int((~res.found).sum()), 2)))

    def test_track_with_forward_backward_check(self):
        src = _texture(2)
        dst = _shift(src, -2.0, 1.0)
        tracker = FeatureTracker(TrackerParams(fb_thresh=0.5))

        seeds = tracker.detect(src, max_count=100)
        res = tracker.track(src, dst, seeds)

        ok = res.found & _interior(seeds, src.shape[1], src.shape[0])
        self.assertGreater(ok.sum(), 0)
        err = np.linalg.norm(res.points[ok] - (seeds[ok] + [-2.0, 1.0]), axis=1)
        self.assertLess(float(np.median(err)), 0.1)

    def test_track_without_seeds(self):
        img = _texture()
        res = FeatureTracker().track(img, img, np.zeros((0, 2)))
        self.assertEqual(len(res), 0)

    def test_color_input_is_converted(self):
        img = cv2.cvtColor(_texture(), cv2.COLOR_GRAY2BGR)
        self.assertEqual(to_gray(img).ndim, 2)

    def test_track_four_views(self):
        L1 = _texture(3)
        R1 = _shift(L1, -12.0, 0.0)     # disparity
        L2 = _shift(L1, 2.0, 1.0)       # motion
        R2 = _shift(R1, 2.0, 1.0)
        tracker = FeatureTracker(TrackerParams(max_corners=150))

        table = tracker.track_four_views(L1, R1, L2, R2)

        self.assertEqual(set(table.views), {"L1", "R1", "L2", "R2"})
        n = len(table)
        self.assertGreater(n, 0)
        for view in table.views:
            self.assertEqual(table.view(view).shape, (n, 2))
        self.assertTrue(np.all(table.valid["R2"] <= table.valid["R1"]))

        ok = table.all_valid() & _interior(table.view("L1"), L1.shape[1], L1.shape[0], margin=40)
        self.assertGreater(ok.sum(), n // 2)
        np.testing.assert_allclose(np.median(table.view("R1")[ok] - table.view("L1")[ok], axis=0),
                                   [-12.0, 0.0], atol=0.2)
        np.testing.assert_allclose(np.median(table.view("R2")[ok] - table.view("L1")[ok], axis=0),
                                   [-10.0, 1.0], atol=0.2)

    def test_track_four_views_without_features(self):
        blank = np.zeros((480, 640), dtype=np.uint8)
        table = FeatureTracker().track_four_views(blank, blank, blank, blank)
        self.assertEqual(len(table), 0)


if __name__ == "__main__":
    unittest.main()
