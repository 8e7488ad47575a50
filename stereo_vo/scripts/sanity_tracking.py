'''
tracks one frame pair (k, k+1) through the four views
prints how many correspondences survive each filter stage
checks the epipolar residuals of the inliers (the real sanity test)
'''
from __future__ import annotations
import argparse
from pathlib import Path
import numpy as np
import cv2

from stereo_vo.providers.stereo_sequence_provider import StereoSequenceProvider
from stereo_vo.core.stereo.tracker import FeatureTracker
from stereo_vo.core.stereo.correspondence import prune_table_invisible, prune_zero
from stereo_vo.core.geometry.fundamental import estimate_fundamental, epipolar_distances


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--root", required=True, help="directory holding left/ and right/ image folders")
    ap.add_argument("--frame", type=int, default=0, help="index k of the pair (k, k+1)")
    ap.add_argument("--width", type=int, default=752)
    ap.add_argument("--height", type=int, default=480)
    ap.add_argument("--out", type=Path, default=None, help="optional path for a drawing of the L1 -> L2 tracks")
    args = ap.parse_args()

    provider = StereoSequenceProvider(args.root, first=args.frame, last=args.frame + 1)
    f1 = provider.next_event().to_frame()
    f2 = provider.next_event().to_frame()
    if not f1.is_complete() or not f2.is_complete():
        raise FileNotFoundError(f"Could not read stereo pairs {args.frame} and {args.frame + 1}")

    tracker = FeatureTracker()
    table = tracker.track_four_views(f1.left, f1.right, f2.left, f2.right)
    print("seeds in L1:", len(table))
    for view in ("R1", "L2", "R2"):
        print(f"  found in {view}:", int(table.valid[view].sum()))

    table = prune_table_invisible(table, args.width, args.height)
    print("inside image in all four views:", len(table))

    fL = estimate_fundamental(table.view("L1"), table.view("L2"))
    fR = estimate_fundamental(table.view("R1"), table.view("R2"))
    print("F left  ok:", fL.success, "inliers:", fL.n_inliers)
    print("F right ok:", fR.success, "inliers:", fR.n_inliers)
    if not (fL.success and fR.success):
        print("Fundamental matrix failed, nothing more to check.")
        return

    L1, L2, R1, R2 = prune_zero(fL.inliers_a, fL.inliers_b, fR.inliers_a, fR.inliers_b)
    print("inliers in both cameras:", L1.shape[0])

    dL = epipolar_distances(fL.F, L1, L2)
    dR = epipolar_distances(fR.F, R1, R2)
    print("epipolar dist left  mean/95/max:", float(dL.mean()), float(np.percentile(dL, 95)), float(dL.max()))
    print("epipolar dist right mean/95/max:", float(dR.mean()), float(np.percentile(dR, 95)), float(dR.max()))
    print("Sanity expectation: max epipolar distance <= RANSAC threshold (1 px).")

    flow = np.linalg.norm(L2 - L1, axis=1)
    print("L1 -> L2 flow mean/95/max:", float(flow.mean()), float(np.percentile(flow, 95)), float(flow.max()))

    if args.out is not None:
        vis = cv2.cvtColor(f2.left, cv2.COLOR_GRAY2BGR)
        for a, b in zip(L1, L2):
            cv2.line(vis, tuple(int(v) for v in a), tuple(int(v) for v in b), (0, 255, 0), 1)
            cv2.circle(vis, tuple(int(v) for v in b), 2, (0, 0, 255), -1)
        cv2.imwrite(str(args.out), vis)
        print(f"Saved track drawing to {args.out}")


if __name__ == "__main__":
    main()
