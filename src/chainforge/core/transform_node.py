"""Transform hierarchy with lazily cached world and normal transforms.

Each :class:`TransformNode` owns a local pose (origin, ``[roll, pitch, yaw]``
orientation in degrees, scale) and caches::

    world  = parent.world @ T(origin) @ R(orientation) @ S(scale)
    normal = inverse(world).T

Mutations only flip dirty flags (on the node and everything below it);
matrices are rebuilt the next time somebody asks for them.

Parent/child links are non-owning.  Node lifetime belongs to
:class:`~chainforge.core.registry.NodeRegistry`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from chainforge.constants import YAW, VEC_FORWARD, VEC_LEFT, VEC_UP
from chainforge.core.geometry import (
    angle_modulo, arcball_rotation, decompose_transform, direction_to_orientation,
    local_transform, mat4_from_orientation, orientation_from_mat3,
    vector_rejection_from,
)
from chainforge.core.joint_constraints import HingeAxis, JointConstraints, JointType
from chainforge.core.math_utils import (
    Mat4, Vec3, as_vec3, mat4_axis_angle, mat4_identity, mat4_inverse,
    mat4_normal, normalize, transform_direction, transform_point, vec3,
)

logger = logging.getLogger(__name__)


class NodeKind(Enum):
    """Selects how a node is re-based when it changes parent."""
    JOINT = "joint"
    GEOMETRY = "geometry"


@dataclass
class DebugGuides:
    """Guide-wire vectors left behind by the IK solver for visualisation.

    All values are in the node's parent space, relative to its pivot.
    """
    target_dir: Vec3 = field(default_factory=vec3)
    end_effector_tip_dir: Vec3 = field(default_factory=vec3)
    local_pivot: Vec3 = field(default_factory=vec3)
    local_target: Vec3 = field(default_factory=vec3)


class TransformNode:
    """A node in the transform hierarchy.

    World matrix = parent.world_matrix @ local_matrix.
    """

    def __init__(
        self,
        name: str = "",
        origin=(0.0, 0.0, 0.0),
        orientation=(0.0, 0.0, 0.0),
        scale=(1.0, 1.0, 1.0),
        kind: NodeKind = NodeKind.JOINT,
    ):
        self.name = name
        self.node_id: Optional[int] = None
        self.kind = kind
        self.parent: Optional["TransformNode"] = None
        self.children: list["TransformNode"] = []

        # Local pose
        self._origin: Vec3 = as_vec3(origin)
        self._orientation: Vec3 = as_vec3(orientation)
        self._scale: Vec3 = as_vec3(scale)

        # Components
        self.constraints = JointConstraints()
        self.debug = DebugGuides()

        # Local-space points carried by GEOMETRY nodes
        self.points: Optional[NDArray[np.float64]] = None

        # Cached matrices
        self._transform: Mat4 = mat4_identity()
        self._normal_transform: Mat4 = mat4_identity()
        self._transform_dirty: bool = True
        self._normal_dirty: bool = True

    def __repr__(self) -> str:
        return f"TransformNode({self.name!r}, id={self.node_id})"

    # ------------------------------------------------------------------
    # Local pose
    # ------------------------------------------------------------------

    def get_origin(self) -> Vec3:
        return self._origin.copy()

    def set_origin(self, origin) -> None:
        self._origin = as_vec3(origin)
        self.mark_dirty()

    def get_orientation(self) -> Vec3:
        return self._orientation.copy()

    def set_orientation(self, orientation) -> None:
        """Replace the orientation.  A hinged node re-pins to the new heading."""
        self._orientation = as_vec3(orientation)
        if self.constraints.is_hinged:
            self.recalibrate_heading_in_parent_system()
        self.mark_dirty()

    def get_scale(self) -> Vec3:
        return self._scale.copy()

    def set_scale(self, scale) -> None:
        self._scale = as_vec3(scale)
        self.mark_dirty()

    def reset_transform(self) -> None:
        self._origin = vec3()
        self._scale = vec3(1, 1, 1)
        self.set_orientation(vec3())

    def get_local_rotation_transform(self) -> Mat4:
        return mat4_from_orientation(self._orientation)

    def get_local_transform(self) -> Mat4:
        return local_transform(self._origin, self._orientation, self._scale)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def get_parent(self) -> Optional["TransformNode"]:
        return self.parent

    def get_children(self) -> list["TransformNode"]:
        return list(self.children)

    def is_ancestor_of(self, node: Optional["TransformNode"]) -> bool:
        while node is not None:
            node = node.parent
            if node is self:
                return True
        return False

    def link_parent(self, new_parent: Optional["TransformNode"], keep_transform: bool = False) -> None:
        """Attach to *new_parent* (or detach with ``None``).

        With *keep_transform* the local pose is re-derived so the world
        transform is unchanged; how that happens depends on the node kind
        (see ``REBASE_HANDLERS``).
        """
        if new_parent is self or self.is_ancestor_of(new_parent):
            raise ValueError(f"Linking {self.name!r} under {new_parent.name!r} would create a cycle")

        world = self.get_transform(False).copy() if keep_transform else None

        old_parent = self.parent
        if old_parent is not None and self in old_parent.children:
            old_parent.children.remove(self)
        self.parent = new_parent
        if new_parent is not None and self not in new_parent.children:
            new_parent.children.append(self)

        if keep_transform:
            if new_parent is not None:
                basis = mat4_inverse(new_parent.get_transform(False)) @ world
            else:
                basis = world
            REBASE_HANDLERS[self.kind](self, basis)
            if self.constraints.is_hinged:
                self.recalibrate_heading_in_parent_system()
        logger.debug("Linked %s under %s (keep_transform=%s)",
                     self.name, new_parent.name if new_parent else None, keep_transform)
        self.mark_dirty()

    def unlink_children(self) -> None:
        """Detach every child, leaving each at its current world pose."""
        for child in list(self.children):
            child.link_parent(None, keep_transform=True)

    def traverse(self, callback: Callable[["TransformNode"], None]) -> None:
        """Visit this node and all descendants depth-first."""
        stack = [self]
        while stack:
            node = stack.pop()
            callback(node)
            stack.extend(reversed(node.children))

    def find(self, name: str) -> Optional["TransformNode"]:
        """Find first descendant (or self) with given name."""
        found: list[TransformNode] = []

        def _match(node: TransformNode) -> None:
            if not found and node.name == name:
                found.append(node)

        self.traverse(_match)
        return found[0] if found else None

    def leaves(self) -> list["TransformNode"]:
        result: list[TransformNode] = []
        self.traverse(lambda n: result.append(n) if not n.children else None)
        return result

    # ------------------------------------------------------------------
    # Caching
    # ------------------------------------------------------------------

    def mark_dirty(self) -> None:
        """Mark this node and all descendants as needing matrix update."""
        def _dirty(node: TransformNode) -> None:
            node._transform_dirty = True
            node._normal_dirty = True

        self.traverse(_dirty)

    def is_dirty(self) -> bool:
        return self._transform_dirty

    def get_transform(self, trace_down: bool = True) -> Mat4:
        """World transform of this node (read-only array).

        With *trace_down* the whole subtree is invalidated and every leaf is
        refreshed along its ancestor path before the cached value is returned.
        """
        if trace_down:
            self.mark_dirty()
            for leaf in self.leaves():
                leaf.get_transform(False)
            return self._transform

        if self._transform_dirty:
            # Dirty nodes form a contiguous run from here up to the first
            # clean ancestor; rebuild that run top-down.
            path: list[TransformNode] = []
            node: Optional[TransformNode] = self
            while node is not None and node._transform_dirty:
                path.append(node)
                node = node.parent
            for n in reversed(path):
                local = n.get_local_transform()
                if n.parent is not None:
                    world = n.parent._transform @ local
                else:
                    world = local
                world.flags.writeable = False
                n._transform = world
                n._transform_dirty = False
        return self._transform

    def get_normal_transform(self, trace_down: bool = True) -> Mat4:
        """Inverse transpose of the world transform (read-only array)."""
        if trace_down:
            def _dirty(node: TransformNode) -> None:
                node._normal_dirty = True

            self.traverse(_dirty)
            self.get_transform(True)

        if self._normal_dirty:
            normal = mat4_normal(self.get_transform(False))
            normal.flags.writeable = False
            self._normal_transform = normal
            self._normal_dirty = False
        return self._normal_transform

    # ------------------------------------------------------------------
    # Coordinate systems
    # ------------------------------------------------------------------

    def in_abs_system(self, local_point=(0.0, 0.0, 0.0)) -> Vec3:
        """Map a point from this node's local space to world space."""
        return transform_point(self.get_transform(False), as_vec3(local_point))

    def in_parent_system(self, abs_point) -> Vec3:
        """Map a world-space point into this node's parent space."""
        p = as_vec3(abs_point)
        if self.parent is None:
            return p
        return transform_point(mat4_inverse(self.parent.get_transform(False)), p)

    def from_origin_in_parent_system(self, abs_point) -> Vec3:
        """Parent-space offset of a world point from this node's pivot."""
        return self.in_parent_system(abs_point) - self._origin

    def get_abs_heading(self) -> Vec3:
        return normalize(transform_direction(self.get_normal_transform(False), VEC_FORWARD))

    def get_abs_up_direction(self) -> Vec3:
        return normalize(transform_direction(self.get_normal_transform(False), VEC_UP))

    def get_abs_left_direction(self) -> Vec3:
        return normalize(transform_direction(self.get_normal_transform(False), VEC_LEFT))

    def get_abs_points(self) -> Optional[NDArray[np.float64]]:
        """World-space copy of the attached points, if any."""
        if self.points is None:
            return None
        m = self.get_transform(False)
        return self.points @ m[:3, :3].T + m[:3, 3]

    # ------------------------------------------------------------------
    # Rotation helpers
    # ------------------------------------------------------------------

    def point_at_local(self, local_target, local_up=None) -> None:
        """Orient so the heading points along a parent-space direction."""
        self.set_orientation(direction_to_orientation(as_vec3(local_target), local_up))

    def set_local_rotation_transform(self, rotation: Mat4) -> None:
        self.set_orientation(orientation_from_mat3(rotation[:3, :3]))

    def rotate(self, angle_delta: float, axis) -> float:
        """Rotate by *angle_delta* degrees about a parent-space *axis*.

        Joint constraints are applied afterwards.  Returns the angle that
        was requested along the free rotation, which for a hinge is the
        component about the hinge axis.
        """
        axis = normalize(as_vec3(axis))
        if self.constraints.is_hinged:
            hinge = self.hinge_axis_in_parent_system()
            signed = angle_delta * float(np.dot(axis, hinge))
            o = self._orientation.copy()
            index = self.constraints.hinge_axis.value
            o[index] = angle_modulo(o[index] + signed)
            self._orientation = o
            applied = abs(signed)
        else:
            rotation = mat4_axis_angle(axis, np.radians(angle_delta))
            self._orientation = orientation_from_mat3(
                (rotation @ self.get_local_rotation_transform())[:3, :3]
            )
            applied = abs(angle_delta)
        self.apply_joint_constraints()
        self.mark_dirty()
        return applied

    def arcball(self, abs_target, abs_reference_point) -> tuple[Vec3, float]:
        """Parent-space rotation (axis, degrees) turning the pivot-to-reference
        direction onto the pivot-to-target direction."""
        target_dir = self.from_origin_in_parent_system(abs_target)
        reference_dir = self.from_origin_in_parent_system(abs_reference_point)
        return arcball_rotation(reference_dir, target_dir)

    # ------------------------------------------------------------------
    # Joint constraints
    # ------------------------------------------------------------------

    def get_joint_type(self) -> JointType:
        return self.constraints.joint_type

    def set_joint_type(self, joint_type: "JointType | str") -> None:
        self.constraints.set_joint_type(joint_type)

    def set_enabled_axes(self, mask) -> None:
        self.constraints.set_enabled_axes(mask)

    def set_constraints_center(self, center) -> None:
        self.constraints.set_center(center)

    def set_constraints_max_deviation(self, max_deviation) -> None:
        self.constraints.set_max_deviation(max_deviation)

    def get_hinge_axis(self) -> HingeAxis:
        return self.constraints.hinge_axis

    def set_hinge_axis(self, axis: "HingeAxis | str | None") -> None:
        self.constraints.set_hinge_axis(axis, self._orientation)

    def recalibrate_heading_in_parent_system(self) -> None:
        """Pin the non-hinge axes to the current parent-space orientation."""
        self.constraints.pin(self._orientation)

    def apply_joint_constraints(self) -> None:
        if self.constraints.joint_type is JointType.PRISMATIC:
            clamped = self.constraints.clamp_origin(self._origin)
            if not np.array_equal(clamped, self._origin):
                self._origin = clamped
                self.mark_dirty()
            return
        clamped = self.constraints.clamp_orientation(self._orientation)
        if not np.array_equal(clamped, self._orientation):
            self._orientation = clamped
            self.mark_dirty()

    def hinge_axis_in_parent_system(self) -> Vec3:
        """Parent-space axis a change of the hinge angle rotates about.

        Yaw turns about the parent's up axis, pitch about the yawed left axis
        and roll about the node's own heading.
        """
        axis = self.constraints.hinge_axis
        if axis is HingeAxis.YAW:
            return VEC_UP.copy()
        if axis is HingeAxis.PITCH:
            yaw_only = vec3(0.0, 0.0, self._orientation[YAW])
            return mat4_from_orientation(yaw_only)[:3, :3] @ VEC_LEFT
        if axis is HingeAxis.ROLL:
            return self.get_local_rotation_transform()[:3, :3] @ VEC_FORWARD
        raise ValueError(f"{self.name!r} has no hinge axis")

    def project_rotation_to_plane_of_free_rotation(self, target: Vec3, tip: Vec3) -> tuple[Vec3, Vec3]:
        """Drop the hinge-axis component of two pivot-relative vectors."""
        if not self.constraints.is_hinged:
            return target, tip
        normal = self.hinge_axis_in_parent_system()
        return vector_rejection_from(target, normal), vector_rejection_from(tip, normal)


# ── Re-basing on re-parent ────────────────────────────────────────────

def _rebase_joint(node: TransformNode, local: Mat4) -> None:
    """Re-derive origin / orientation / scale from a parent-space matrix."""
    node._origin, node._orientation, node._scale = decompose_transform(local)


def _rebase_geometry(node: TransformNode, local: Mat4) -> None:
    """Bake the transform into the attached points and reset the pose.

    Children are re-expressed relative to the baked (identity) frame.
    """
    if node.points is not None:
        node.points = node.points @ local[:3, :3].T + local[:3, 3]
    for child in node.children:
        _rebase_joint(child, local @ child.get_local_transform())
        if child.constraints.is_hinged:
            child.recalibrate_heading_in_parent_system()
    node._origin = vec3()
    node._orientation = vec3()
    node._scale = vec3(1, 1, 1)


REBASE_HANDLERS: dict[NodeKind, Callable[[TransformNode, Mat4], None]] = {
    NodeKind.JOINT: _rebase_joint,
    NodeKind.GEOMETRY: _rebase_geometry,
}
