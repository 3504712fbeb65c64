"""Solve one IK chain from a skeleton description and print the result.

Usage::

    # Reach for a point with the default two-link arm:
    python -m tools.ik_demo --target 1.5 0 0

    # Another skeleton and chain, with solver overrides:
    python -m tools.ik_demo --skeleton crane --chain hook --target 1 0.5 2 --iterations 50

    # Also orient the end-effector:
    python -m tools.ik_demo --target 1.2 0 0.8 --end-effector-dir 1 0 0 -v
"""

from __future__ import annotations

import argparse
import logging
import sys

import numpy as np

from chainforge.core.registry import SceneContext
from chainforge.ik.ccd_solver import CCDSolver, ChainTopologyError, SolverSettings
from chainforge.loaders.skeleton_loader import Skeleton, load_skeleton

logger = logging.getLogger(__name__)


def _print_pose(skeleton: Skeleton) -> None:
    print(f"{'node':<16} {'origin':>28} {'orientation (r, p, y)':>28} {'world':>28}")
    for name, node in skeleton.nodes.items():
        origin = np.array2string(node.get_origin(), precision=3, suppress_small=True)
        orient = np.array2string(node.get_orientation(), precision=2, suppress_small=True)
        world = np.array2string(node.in_abs_system(), precision=3, suppress_small=True)
        print(f"{name:<16} {origin:>28} {orient:>28} {world:>28}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CCD inverse kinematics demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--skeleton", default="two_link_arm",
        help="Skeleton file under assets/config/skeleton/ (default: two_link_arm)",
    )
    parser.add_argument(
        "--chain", default=None,
        help="Chain to solve (default: first chain in the file)",
    )
    parser.add_argument(
        "--target", nargs=3, type=float, required=True, metavar=("X", "Y", "Z"),
        help="World-space target point",
    )
    parser.add_argument(
        "--end-effector-dir", nargs=3, type=float, default=None, metavar=("X", "Y", "Z"),
        help="World-space direction the end-effector tip should point along",
    )
    parser.add_argument(
        "--iterations", type=int, default=None,
        help="Sweep budget (default: from ik_solver.json)",
    )
    parser.add_argument(
        "--accept-distance", type=float, default=None,
        help="Tip-to-target distance counted as success (default: from ik_solver.json)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable verbose logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")

    context = SceneContext()
    try:
        skeleton = load_skeleton(args.skeleton, context)
    except FileNotFoundError as e:
        parser.error(f"Skeleton not found: {e}")
    if not skeleton.chains:
        parser.error(f"Skeleton {skeleton.name!r} defines no chains")

    chain_name = args.chain or next(iter(skeleton.chains))
    if chain_name not in skeleton.chains:
        parser.error(f"Unknown chain: {chain_name!r}. Choices: {', '.join(skeleton.chains)}")
    chain = skeleton.chains[chain_name]

    settings = SolverSettings.from_config()
    if args.iterations is not None:
        settings.iterations = args.iterations
    if args.accept_distance is not None:
        settings.accept_distance = args.accept_distance

    solver = CCDSolver(settings, context=context)
    try:
        result = solver.solve(
            chain.root, chain.end_effector, chain.tip, args.target,
            end_effector_dir=args.end_effector_dir,
        )
    except ChainTopologyError as e:
        logger.error("Cannot solve chain %s: %s", chain_name, e)
        return 1

    _print_pose(skeleton)
    tip = chain.end_effector.in_abs_system(chain.tip)
    print(f"\ntip {np.array2string(tip, precision=4, suppress_small=True)}  "
          f"distance {result.distance:.5f}  sweeps {result.iterations}  "
          f"{'solved' if result.success else 'not solved'}")
    return 0 if result.success else 2


if __name__ == "__main__":
    sys.exit(main())
