import numpy as np
import tempfile
import unittest
from pathlib import Path
import cv2

from stereo_vo.providers.stereo_sequence_provider import StereoSequenceProvider


class StereoSequenceProviderTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "left").mkdir()
        (self.root / "right").mkdir()
        for i in range(3):
            img = np.full((48, 64), 10 * (i + 1), dtype=np.uint8)
            cv2.imwrite(str(self.root / "left" / f"{i}_l.png"), img)
            cv2.imwrite(str(self.root / "right" / f"{i}_r.png"), img + 1)

    def tearDown(self):
        self._tmp.cleanup()

    def _provider(self, **kw):
        return StereoSequenceProvider(self.root, left_pattern="left/{index}_l.png",
                                      right_pattern="right/{index}_r.png", **kw)

    def test_reads_until_files_run_out(self):
        provider = self._provider()
        events = []
        while provider.has_next():
            events.append(provider.next_event())

        self.assertEqual([ev.index for ev in events], [0, 1, 2])
        self.assertEqual(events[1].type, "stereo")
        self.assertEqual(events[1].left.shape, (48, 64))
        self.assertEqual(int(events[1].left[0, 0]), 20)
        self.assertEqual(int(events[1].right[0, 0]), 21)
        with self.assertRaises(StopIteration):
            provider.next_event()

    def test_missing_image_comes_back_as_none(self):
        (self.root / "right" / "1_r.png").unlink()
        provider = self._provider(first=1, last=2)

        frame = provider.next_event().to_frame()

        self.assertIsNotNone(frame.left)
        self.assertIsNone(frame.right)
        self.assertFalse(frame.is_complete())
        self.assertTrue(provider.has_next())

    def test_explicit_range(self):
        provider = self._provider(first=1, last=1)
        self.assertEqual(provider.next_event().index, 1)
        self.assertFalse(provider.has_next())


if __name__ == "__main__":
    unittest.main()
