"""Cyclic Coordinate Descent inverse kinematics.

Each sweep walks the chain from the end-effector's parent up to (but not
including) the root.  Every joint is turned so the pivot-to-tip direction
lines up with the pivot-to-target direction, then its joint constraints are
re-applied.  Sweeps repeat until the tip is close enough, the corrections
plateau, or the iteration budget runs out.  Whatever pose was reached is kept.

Prismatic joints slide instead of turning: their origin moves by the
parent-space offset between tip and target.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from chainforge.constants import (
    DEFAULT_ACCEPT_AVG_ANGLE, DEFAULT_ACCEPT_DISTANCE, DEFAULT_IK_ITERATIONS, EPSILON,
)
from chainforge.core.config_loader import load_config
from chainforge.core.events import EventType
from chainforge.core.geometry import angle_between, arcball_rotation
from chainforge.core.joint_constraints import JointType
from chainforge.core.math_utils import Vec3, as_vec3, normalize
from chainforge.core.registry import SceneContext
from chainforge.core.transform_node import TransformNode

logger = logging.getLogger(__name__)


class ChainTopologyError(ValueError):
    """The root/end-effector pair does not describe a single ancestor path."""


@dataclass
class SolverSettings:
    """Iteration budget and acceptance thresholds."""
    iterations: int = DEFAULT_IK_ITERATIONS
    accept_distance: float = DEFAULT_ACCEPT_DISTANCE
    accept_avg_angle: float = DEFAULT_ACCEPT_AVG_ANGLE  # degrees

    def __post_init__(self):
        if self.iterations < 0:
            raise ValueError(f"iterations must be >= 0, got {self.iterations}")
        if self.accept_distance < 0:
            raise ValueError(f"accept_distance must be >= 0, got {self.accept_distance}")
        if self.accept_avg_angle < 0:
            raise ValueError(f"accept_avg_angle must be >= 0, got {self.accept_avg_angle}")

    @classmethod
    def from_config(cls, name: str = "ik_solver.json") -> "SolverSettings":
        """Load settings from assets/config/.  Falls back to defaults on failure."""
        try:
            data = load_config(name)
        except (FileNotFoundError, ValueError) as e:
            logger.warning("IK solver config not found, using defaults: %s", e)
            return cls()
        try:
            return cls(
                iterations=int(data.get("iterations", DEFAULT_IK_ITERATIONS)),
                accept_distance=float(data.get("accept_distance", DEFAULT_ACCEPT_DISTANCE)),
                accept_avg_angle=float(data.get("accept_avg_angle", DEFAULT_ACCEPT_AVG_ANGLE)),
            )
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("IK solver config malformed, using defaults: %s", e)
            return cls()


@dataclass
class IKSolveResult:
    """Outcome of one :meth:`CCDSolver.solve` call."""
    success: bool
    iterations: int           # sweeps actually run
    distance: float           # final tip-to-target distance
    avg_angle: float = 0.0    # mean tip correction (degrees) of the last sweep
    plateaued: bool = False

    def __bool__(self) -> bool:
        return self.success


def build_chain(root: TransformNode, end_effector: TransformNode) -> list[TransformNode]:
    """Joints between *end_effector* and *root*, nearest the end-effector first.

    Neither endpoint is included.  Raises :class:`ChainTopologyError` when
    *root* is not a proper ancestor of *end_effector*.
    """
    if end_effector is root:
        raise ChainTopologyError(f"End-effector {end_effector.name!r} is the root")
    chain: list[TransformNode] = []
    seen = {id(end_effector)}
    node = end_effector.parent
    while node is not root:
        if node is None:
            raise ChainTopologyError(
                f"{root.name!r} is not an ancestor of {end_effector.name!r}"
            )
        if id(node) in seen:
            raise ChainTopologyError(f"Cycle through {node.name!r}")
        seen.add(id(node))
        chain.append(node)
        node = node.parent
    return chain


class CCDSolver:
    """CCD solver bound to a set of :class:`SolverSettings`.

    Parameters
    ----------
    settings:
        Budget and thresholds.  Defaults to :class:`SolverSettings()`.
    context:
        Optional scene context; when given, ``IK_SOLVE_FINISHED`` is
        published on its event bus after every solve.
    """

    def __init__(self, settings: Optional[SolverSettings] = None,
                 context: Optional[SceneContext] = None):
        self.settings = settings or SolverSettings()
        self.context = context

    def solve(
        self,
        root: TransformNode,
        end_effector: TransformNode,
        local_tip,
        target,
        end_effector_dir=None,
    ) -> IKSolveResult:
        """Drive ``end_effector``'s *local_tip* toward the world-space *target*.

        When *end_effector_dir* (world space) is given the end-effector itself
        is also turned each sweep so its tip points along that direction.
        """
        chain = build_chain(root, end_effector)
        local_tip = as_vec3(local_tip)
        target = as_vec3(target)
        tip_dir = as_vec3(end_effector_dir) if end_effector_dir is not None else None
        segments = ([end_effector] if tip_dir is not None else []) + chain

        s = self.settings
        distance = self._tip_distance(end_effector, local_tip, target)
        result = IKSolveResult(success=distance <= s.accept_distance, iterations=0, distance=distance)

        for i in range(s.iterations):
            if result.success:
                break
            corrections: list[float] = []
            for segment in segments:
                tip = end_effector.in_abs_system(local_tip)
                if segment is end_effector:
                    segment_target = end_effector.in_abs_system() + tip_dir
                else:
                    segment_target = target

                if segment.get_joint_type() is JointType.PRISMATIC:
                    self._slide(segment, segment_target, tip)
                    continue

                applied = self._turn(segment, segment_target, tip, end_effector, local_tip)
                if applied is not None:
                    corrections.append(applied)

            result.iterations = i + 1
            result.distance = self._tip_distance(end_effector, local_tip, target)
            result.avg_angle = float(np.mean(corrections)) if corrections else 0.0
            logger.debug(
                "CCD sweep %d: distance %.5f, avg correction %.4f deg",
                i + 1, result.distance, result.avg_angle,
            )
            if result.distance <= s.accept_distance:
                result.success = True
                break
            if corrections and result.avg_angle < s.accept_avg_angle:
                result.plateaued = True
                break

        if result.success:
            logger.info("IK solved %s in %d sweeps (distance %.5f)",
                        end_effector.name, result.iterations, result.distance)
        else:
            logger.info("IK for %s stopped after %d sweeps at distance %.5f%s",
                        end_effector.name, result.iterations, result.distance,
                        " (plateau)" if result.plateaued else "")

        if self.context is not None:
            self.context.events.publish(
                EventType.IK_SOLVE_FINISHED, end_effector=end_effector, result=result,
            )
        return result

    @staticmethod
    def _tip_distance(end_effector: TransformNode, local_tip: Vec3, target: Vec3) -> float:
        return float(np.linalg.norm(end_effector.in_abs_system(local_tip) - target))

    @staticmethod
    def _slide(segment: TransformNode, target: Vec3, tip: Vec3) -> None:
        offset = segment.in_parent_system(target) - segment.in_parent_system(tip)
        segment.set_origin(segment.get_origin() + offset)
        segment.apply_joint_constraints()

    @staticmethod
    def _turn(
        segment: TransformNode,
        target: Vec3,
        tip: Vec3,
        end_effector: TransformNode,
        local_tip: Vec3,
    ) -> Optional[float]:
        """Rotate one joint.  Returns how far the tip swung (degrees about the
        pivot), or ``None`` when the joint was skipped as degenerate."""
        target_vec = segment.from_origin_in_parent_system(target)
        tip_vec = segment.from_origin_in_parent_system(tip)
        if segment.constraints.is_hinged:
            target_vec, tip_vec = segment.project_rotation_to_plane_of_free_rotation(target_vec, tip_vec)
        if np.linalg.norm(target_vec) < EPSILON or np.linalg.norm(tip_vec) < EPSILON:
            return None

        if segment.constraints.is_hinged:
            axis = segment.hinge_axis_in_parent_system()
            angle = math.degrees(math.atan2(
                float(np.dot(np.cross(tip_vec, target_vec), axis)),
                float(np.dot(tip_vec, target_vec)),
            ))
        else:
            axis, angle = arcball_rotation(tip_vec, target_vec)

        guides = segment.debug
        guides.target_dir = normalize(target_vec)
        guides.end_effector_tip_dir = normalize(tip_vec)
        guides.local_pivot = axis
        guides.local_target = target_vec

        if angle == 0.0:
            return 0.0
        segment.rotate(angle, axis)
        swung_tip = segment.from_origin_in_parent_system(end_effector.in_abs_system(local_tip))
        return angle_between(segment.from_origin_in_parent_system(tip), swung_tip)


def solve_ik_ccd(
    root: TransformNode,
    end_effector: TransformNode,
    local_tip,
    target,
    iterations: int = DEFAULT_IK_ITERATIONS,
    accept_distance: float = DEFAULT_ACCEPT_DISTANCE,
    accept_avg_angle: float = DEFAULT_ACCEPT_AVG_ANGLE,
    end_effector_dir=None,
    context: Optional[SceneContext] = None,
) -> bool:
    """Pose the chain from *root* to *end_effector* so *local_tip* reaches *target*.

    Returns True when the tip ends within *accept_distance* of the target.
    The chain keeps its last pose either way.  An invalid root/end-effector
    pair is logged and reported as False.
    """
    solver = CCDSolver(
        SolverSettings(iterations, accept_distance, accept_avg_angle), context=context,
    )
    try:
        return solver.solve(root, end_effector, local_tip, target, end_effector_dir).success
    except ChainTopologyError as e:
        logger.error("IK chain rejected: %s", e)
        return False
