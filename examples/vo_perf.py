#!/usr/bin/env python3
"""Run direct visual odometry over a dataset and report per-frame performance.

Usage:
    uv run python examples/vo_perf.py --dataset data/sequence --config conf/default.yaml
    uv run python examples/vo_perf.py --numframes 60 --output results/synthetic

Without --dataset a synthetic plane sequence is used.
"""

import argparse
import logging
import time

import numpy as np

from dvo import AlgorithmParameters, DatasetReader, SyntheticSequence, VisualOdometry
from dvo.frontend.pose import SE3
from dvo.io import write_results

logger = logging.getLogger("vo_perf")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Direct stereo VO performance run")
    parser.add_argument("-c", "--config", default=None, help="algorithm YAML config")
    parser.add_argument("-d", "--dataset", default=None, help="dataset directory")
    parser.add_argument(
        "-o", "--output", default="", help="prefix to store results for later analysis"
    )
    parser.add_argument(
        "-n", "--numframes", type=int, default=1000, help="number of frames to process"
    )
    parser.add_argument("--show", action="store_true", help="stream to the Rerun viewer")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args()


def synthetic_source(num_frames: int) -> SyntheticSequence:
    """Camera swaying in front of the plane while slowly yawing."""
    poses = []
    for i in range(num_frames):
        yaw = 0.05 * np.sin(i / 50.0)
        R = SE3.exp(np.array([0.0, 0.0, 0.0, 0.0, yaw, 0.0])).rotation
        t = np.array([0.3 * np.sin(i / 40.0), 0.05 * np.sin(i / 25.0), 0.3 * np.sin(i / 60.0)])
        poses.append(SE3.from_Rt(R, t))
    return SyntheticSequence(poses)


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    params = (
        AlgorithmParameters.from_yaml(args.config)
        if args.config
        else AlgorithmParameters()
    )
    if args.dataset:
        source = DatasetReader(args.dataset)
    else:
        source = synthetic_source(args.numframes)

    visualizer = None
    if args.show:
        from dvo.visualization import RerunVisualizer

        visualizer = RerunVisualizer("python-dvo-perf")
        size = source.image_size()
        visualizer.log_calibration(source.calibration(), size.width, size.height)

    trajectory = []
    iterations: list[int] = []
    time_ms: list[float] = []
    total_time = 0.0

    with VisualOdometry(source.calibration(), source.image_size(), params) as vo:
        for f_i in range(args.numframes):
            frame = source.next_frame()
            if frame is None:
                logger.info("no more data")
                break

            t0 = time.perf_counter()
            result = vo.add_frame(frame)
            tt = (time.perf_counter() - t0) * 1000
            total_time += tt / 1000

            num_iters = result.num_iterations(params.max_test_level)
            print(
                f"Frame {f_i:05d} {tt:6.2f} ms @ {(f_i + 1) / total_time:5.2f} Hz "
                f"{num_iters:03d} iters {str(result.keyframing_reason):>40} "
                f"num_points {vo.active_keyframe.num_points:<8d}",
                end="\r",
                flush=True,
            )
            if result.max_iterations_reached:
                print()

            if visualizer is not None:
                visualizer.log_result(result, frame, source.calibration())

            trajectory.append(result.world_pose)
            iterations.append(num_iters)
            time_ms.append(tt)

        print()
        logger.info("done: %d frames, %d keyframes", vo.num_frames, vo.num_keyframes)

    if args.output:
        print(f"writing results to prefix {args.output}")
        write_results(args.output, trajectory, iterations, time_ms)


if __name__ == "__main__":
    main()
