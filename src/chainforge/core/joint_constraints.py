"""Per-joint mechanical limits: axis-range clamps and single-axis hinges.

A :class:`JointConstraints` instance is a component owned by each
:class:`~chainforge.core.transform_node.TransformNode`.  It holds the joint
configuration and knows how to clamp an orientation (revolute joints) or an
origin (prismatic joints).  Invalid configuration is corrected at the setter,
never at solve time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from numpy.typing import NDArray

from chainforge.core.geometry import angle_distance, angle_modulo
from chainforge.core.math_utils import Vec3, as_vec3, clamp

logger = logging.getLogger(__name__)


class JointType(Enum):
    REVOLUTE = "revolute"
    PRISMATIC = "prismatic"

    @classmethod
    def parse(cls, value: "JointType | str") -> "JointType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown joint type: {value!r}") from None


class HingeAxis(Enum):
    """The single orientation axis a hinged joint may turn about.

    Values double as indices into a ``[roll, pitch, yaw]`` orientation.
    """
    NONE = -1
    ROLL = 0
    PITCH = 1
    YAW = 2

    @classmethod
    def parse(cls, value: "HingeAxis | str | None") -> "HingeAxis":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.NONE
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ValueError(f"Unknown hinge axis: {value!r}") from None


AXIS_NAMES = ("roll", "pitch", "yaw")


@dataclass
class JointConstraints:
    """Joint configuration for one node."""
    joint_type: JointType = JointType.REVOLUTE
    enabled_axes: NDArray[np.bool_] = field(default_factory=lambda: np.zeros(3, dtype=bool))
    center: Vec3 = field(default_factory=lambda: np.zeros(3, dtype=np.float64))
    max_deviation: Vec3 = field(default_factory=lambda: np.zeros(3, dtype=np.float64))
    hinge_axis: HingeAxis = HingeAxis.NONE
    # Heading values held by the two non-hinge axes
    pinned: Vec3 = field(default_factory=lambda: np.zeros(3, dtype=np.float64))

    @property
    def is_hinged(self) -> bool:
        return self.hinge_axis is not HingeAxis.NONE

    @property
    def pinned_axes(self) -> list[int]:
        if not self.is_hinged:
            return []
        return [i for i in range(3) if i != self.hinge_axis.value]

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------

    def set_joint_type(self, joint_type: "JointType | str") -> None:
        self.joint_type = JointType.parse(joint_type)

    def set_enabled_axes(self, mask) -> None:
        m = np.array(mask, dtype=bool).reshape(-1)
        if m.shape != (3,):
            raise ValueError(f"Expected 3 axis flags, got {m.shape[0]}")
        self.enabled_axes = m
        self._drop_clamps_on_pinned_axes()

    def set_center(self, center) -> None:
        self.center = as_vec3(center)

    def set_max_deviation(self, max_deviation) -> None:
        dev = as_vec3(max_deviation)
        if (dev < 0).any():
            logger.warning("Negative max deviation %s clamped to 0", dev.tolist())
            dev = np.maximum(dev, 0.0)
        self.max_deviation = dev

    def set_hinge_axis(self, axis: "HingeAxis | str | None", orientation: Vec3) -> None:
        """Restrict rotation to *axis* and pin the others to *orientation*."""
        self.hinge_axis = HingeAxis.parse(axis)
        self.pin(orientation)
        self._drop_clamps_on_pinned_axes()

    def pin(self, orientation: Vec3) -> None:
        """Record the current heading of the non-hinge axes."""
        self.pinned = np.array(orientation, dtype=np.float64)

    def _drop_clamps_on_pinned_axes(self) -> None:
        for i in self.pinned_axes:
            if self.enabled_axes[i]:
                logger.warning(
                    "Range clamp on %s ignored: axis is pinned by %s hinge",
                    AXIS_NAMES[i], self.hinge_axis.name.lower(),
                )
                self.enabled_axes[i] = False

    # ------------------------------------------------------------------
    # Clamping
    # ------------------------------------------------------------------

    def clamp_orientation(self, orientation: Vec3) -> Vec3:
        """Return *orientation* with range clamps and hinge pins applied."""
        o = np.array(orientation, dtype=np.float64)
        for i in range(3):
            if not self.enabled_axes[i]:
                continue
            deviation = angle_distance(o[i], self.center[i])
            if abs(deviation) > self.max_deviation[i]:
                limit = self.max_deviation[i] if deviation > 0 else -self.max_deviation[i]
                o[i] = angle_modulo(self.center[i] + limit)
        for i in self.pinned_axes:
            o[i] = self.pinned[i]
        return o

    def clamp_origin(self, origin: Vec3) -> Vec3:
        """Linear per-axis clamp used by prismatic joints."""
        p = np.array(origin, dtype=np.float64)
        for i in range(3):
            if not self.enabled_axes[i]:
                continue
            lo = self.center[i] - self.max_deviation[i]
            hi = self.center[i] + self.max_deviation[i]
            p[i] = clamp(p[i], lo, hi)
        return p
