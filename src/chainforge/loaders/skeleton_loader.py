"""Build transform hierarchies and IK chain descriptions from JSON."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from chainforge.core.config_loader import load_skeleton_config
from chainforge.core.math_utils import Vec3, as_vec3
from chainforge.core.registry import SceneContext
from chainforge.core.transform_node import NodeKind, TransformNode

logger = logging.getLogger(__name__)


@dataclass
class ChainSpec:
    """One solvable chain: root (excluded), end-effector and its local tip."""
    root: TransformNode
    end_effector: TransformNode
    tip: Vec3


@dataclass
class Skeleton:
    """Result of :func:`build_skeleton`."""
    name: str
    nodes: dict[str, TransformNode] = field(default_factory=dict)
    chains: dict[str, ChainSpec] = field(default_factory=dict)

    def roots(self) -> list[TransformNode]:
        return [n for n in self.nodes.values() if n.parent is None]


def _apply_joint(node: TransformNode, joint: dict[str, Any]) -> None:
    if "type" in joint:
        node.set_joint_type(joint["type"])
    if "center" in joint:
        node.set_constraints_center(joint["center"])
    if "max_deviation" in joint:
        node.set_constraints_max_deviation(joint["max_deviation"])
    if "hinge_axis" in joint:
        node.set_hinge_axis(joint["hinge_axis"])
    if "enabled_axes" in joint:
        node.set_enabled_axes(joint["enabled_axes"])


def build_skeleton(data: dict[str, Any], context: SceneContext, name: str = "") -> Skeleton:
    """Create the nodes described by *data* in ``context.registry``.

    Parents must be listed before their children.  Raises ``ValueError`` on
    duplicate names, unknown parents or chains naming unknown nodes.
    """
    skeleton = Skeleton(name=name or data.get("name", ""))

    for entry in data.get("nodes", []):
        node_name = entry["name"]
        if node_name in skeleton.nodes:
            raise ValueError(f"Duplicate node name: {node_name!r}")

        parent: Optional[TransformNode] = None
        parent_name = entry.get("parent")
        if parent_name is not None:
            parent = skeleton.nodes.get(parent_name)
            if parent is None:
                raise ValueError(f"Node {node_name!r} has unknown parent {parent_name!r}")

        kind = NodeKind(entry.get("kind", NodeKind.JOINT.value))
        node = context.registry.create(
            node_name,
            origin=entry.get("origin", (0.0, 0.0, 0.0)),
            orientation=entry.get("orientation", (0.0, 0.0, 0.0)),
            scale=entry.get("scale", (1.0, 1.0, 1.0)),
            parent=parent,
            kind=kind,
        )
        if "points" in entry:
            node.points = np.array(entry["points"], dtype=np.float64).reshape(-1, 3)
        if "joint" in entry:
            _apply_joint(node, entry["joint"])
        skeleton.nodes[node_name] = node

    for chain_name, chain in data.get("chains", {}).items():
        try:
            root = skeleton.nodes[chain["root"]]
            end_effector = skeleton.nodes[chain["end_effector"]]
        except KeyError as e:
            raise ValueError(f"Chain {chain_name!r} names unknown node {e.args[0]!r}") from None
        if not root.is_ancestor_of(end_effector):
            raise ValueError(
                f"Chain {chain_name!r}: {root.name!r} is not an ancestor of {end_effector.name!r}"
            )
        skeleton.chains[chain_name] = ChainSpec(
            root=root,
            end_effector=end_effector,
            tip=as_vec3(chain.get("tip", (0.0, 0.0, 0.0))),
        )

    logger.info("Built skeleton %r: %d nodes, %d chains",
                skeleton.name, len(skeleton.nodes), len(skeleton.chains))
    return skeleton


def load_skeleton(name: str, context: SceneContext) -> Skeleton:
    """Load ``assets/config/skeleton/<name>.json`` into *context*."""
    data = load_skeleton_config(name)
    return build_skeleton(data, context, name=data.get("name", name))
