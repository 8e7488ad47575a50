from __future__ import annotations
import argparse
import logging
from pathlib import Path
import numpy as np
import matplotlib.pyplot as plt

from stereo_vo.providers.stereo_sequence_provider import StereoSequenceProvider
from stereo_vo.frontend.stereo_odometry import OdometryParams, StereoOdometry
from stereo_vo.frontend.strategies import STRATEGIES
from stereo_vo.core.state import RigPose
from stereo_vo.core.stereo.calib import (
    CameraIntrinsics,
    StereoCalibration,
    K_from_intrinsics,
    D_from_radtan4,
    T_from_yaml_data,
    T_cam0_cam1_from_T_BS,
    extrinsics_from_T,
)

log = logging.getLogger("stereo_vo.run")


def euroc_calibration() -> StereoCalibration:
    # cam0 / cam1 of the EuRoC MAV rig
    K0 = K_from_intrinsics(458.654, 457.296, 367.215, 248.375)
    D0 = D_from_radtan4(-0.28340811, 0.07395907, 0.00019359, 1.76187114e-05)

    K1 = K_from_intrinsics(457.587, 456.134, 379.999, 255.238)
    D1 = D_from_radtan4(-0.28368365, 0.07451284, -0.00010473, -3.55590700e-05)

    T_BS0 = T_from_yaml_data([
        0.0148655429818, -0.999880929698, 0.00414029679422, -0.0216401454975,
        0.999557249008, 0.0149672133247, 0.025715529948, -0.064676986768,
       -0.0257744366974, 0.00375618835797, 0.999660727178, 0.00981073058949,
        0.0, 0.0, 0.0, 1.0
    ])

    T_BS1 = T_from_yaml_data([
        0.0125552670891, -0.999755099723, 0.0182237714554, -0.0198435579556,
        0.999598781151, 0.0130119051815, 0.0251588363115, 0.0453689425024,
       -0.0253898008918, 0.0179005838253, 0.999517347078, 0.00786212447038,
        0.0, 0.0, 0.0, 1.0
    ])

    return StereoCalibration(
        left=CameraIntrinsics(K0, D0),
        right=CameraIntrinsics(K1, D1),
        extrinsics=extrinsics_from_T(T_cam0_cam1_from_T_BS(T_BS0, T_BS1)),
        image_size=(752, 480),
    )


def plot_trajectories(trajs: dict[str, np.ndarray], out_path: Path) -> None:
    fig = plt.figure()
    ax = fig.add_subplot(111, projection="3d")

    for name, p in trajs.items():
        if len(p) == 0:
            continue
        ax.plot(p[:, 0], p[:, 1], p[:, 2], label=f"{name} (left)")
        ax.scatter(*p[0], marker="o")
        ax.scatter(*p[-1], marker="x")

    ax.set_xlabel("x (m)")
    ax.set_ylabel("y (m)")
    ax.set_zlabel("z (m)")
    ax.set_title("Stereo VO: left camera trajectory per method")
    ax.legend()

    # equal axis scaling
    allp = np.vstack([p for p in trajs.values() if len(p)]) if any(len(p) for p in trajs.values()) else np.zeros((1, 3))
    mins, maxs = allp.min(axis=0), allp.max(axis=0)
    mid = (mins + maxs) / 2
    r = max((maxs - mins).max() / 2, 1e-3)
    ax.set_xlim(mid[0] - r, mid[0] + r)
    ax.set_ylim(mid[1] - r, mid[1] + r)
    ax.set_zlim(mid[2] - r, mid[2] + r)

    plt.savefig(out_path, dpi=200, bbox_inches="tight")
    plt.close(fig)


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--root", required=True, help="directory holding left/ and right/ image folders")
    ap.add_argument("--first", type=int, default=0)
    ap.add_argument("--last", type=int, default=None)
    ap.add_argument("--methods", nargs="+", default=["decomposition", "pnp"], choices=sorted(STRATEGIES))
    ap.add_argument("--primary", default="decomposition", choices=sorted(STRATEGIES))
    ap.add_argument("--parallel", action="store_true", help="run left/right branches on a thread pool")
    ap.add_argument("--undistort", action="store_true")
    ap.add_argument("--init-checkpoint", type=Path, default=None, help="32 floats: left then right 4x4 pose")
    ap.add_argument("--out", type=Path, default=Path("results"))
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    params = OdometryParams(
        methods=tuple(args.methods),
        primary=args.primary,
        parallel_branches=args.parallel,
        undistort=args.undistort,
    )

    init_poses = None
    if args.init_checkpoint is not None:
        x0 = RigPose.from_checkpoint(np.loadtxt(args.init_checkpoint), frame=args.first)
        init_poses = {name: x0 for name in params.methods}

    provider = StereoSequenceProvider(args.root, first=args.first, last=args.last)
    vo = StereoOdometry(euroc_calibration(), params, init_poses=init_poses, provider=provider)

    trajs: dict[str, list] = {name: [vo.poses[name].left_position] for name in params.methods}
    n_ok = n_skipped = 0
    try:
        while True:
            res = vo.step()
            if res is None:
                break
            if res.ok:
                n_ok += 1
            else:
                n_skipped += 1
            for name in params.methods:
                trajs[name].append(res.poses[name].left_position)
    finally:
        vo.close()

    log.info(f"[RUN] frames ok={n_ok} skipped={n_skipped}")

    args.out.mkdir(parents=True, exist_ok=True)
    for name in params.methods:
        ckpt = args.out / f"checkpoint_{name}.txt"
        np.savetxt(ckpt, np.asarray(vo.poses[name].to_checkpoint()))
        log.info(f"[RUN] saved {name} checkpoint to {ckpt}")

    fig_path = args.out / "trajectory.png"
    plot_trajectories({k: np.asarray(v) for k, v in trajs.items()}, fig_path)
    log.info(f"[RUN] saved trajectory plot to {fig_path}")


if __name__ == "__main__":
    main()
    # python -m stereo_vo.scripts.run_stereo_odometry --root data/stereoImages
