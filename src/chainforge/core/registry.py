"""Node ownership: an arena of TransformNodes addressed by stable ids.

The registry is the only place nodes are created and destroyed.  Nodes hold
plain references to each other for hierarchy purposes, but callers that need
to keep a handle across frames should keep the integer ``node_id`` and look
the node up again with :meth:`NodeRegistry.get`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from chainforge.core.events import EventBus, EventType
from chainforge.core.transform_node import NodeKind, TransformNode

logger = logging.getLogger(__name__)


class NodeRegistry:
    """Creates, owns and destroys transform nodes."""

    def __init__(self, events: Optional[EventBus] = None):
        self._nodes: dict[int, TransformNode] = {}
        self._next_id: int = 0
        self.events = events

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[TransformNode]:
        return iter(list(self._nodes.values()))

    def __contains__(self, node: object) -> bool:
        return isinstance(node, TransformNode) and self._nodes.get(node.node_id) is node

    def create(
        self,
        name: str = "",
        origin=(0.0, 0.0, 0.0),
        orientation=(0.0, 0.0, 0.0),
        scale=(1.0, 1.0, 1.0),
        parent: Optional[TransformNode] = None,
        kind: NodeKind = NodeKind.JOINT,
    ) -> TransformNode:
        """Allocate a node with an initial pose, optionally under *parent*.

        The pose is taken as given in the parent's space.
        """
        if parent is not None and parent not in self:
            raise KeyError(f"Parent {parent!r} is not owned by this registry")
        node = TransformNode(name, origin, orientation, scale, kind=kind)
        node.node_id = self._next_id
        self._next_id += 1
        self._nodes[node.node_id] = node
        if parent is not None:
            node.link_parent(parent)
        if self.events is not None:
            self.events.publish(EventType.NODE_CREATED, node=node)
        return node

    def get(self, node_id: int) -> TransformNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise KeyError(f"No node with id {node_id}") from None

    def find(self, name: str) -> Optional[TransformNode]:
        """First node (in creation order) with the given name."""
        for node in self._nodes.values():
            if node.name == name:
                return node
        return None

    def roots(self) -> list[TransformNode]:
        return [n for n in self._nodes.values() if n.parent is None]

    def reparent(
        self, node: TransformNode, parent: Optional[TransformNode], keep_transform: bool = True,
    ) -> None:
        """``link_parent`` plus a ``NODE_REPARENTED`` notification."""
        node.link_parent(parent, keep_transform)
        if self.events is not None:
            self.events.publish(
                EventType.NODE_REPARENTED,
                node=node, parent=parent, keep_transform=keep_transform,
            )

    def destroy(self, node: TransformNode) -> None:
        """Unlink *node* from its parent and children, then forget it.

        Children stay where they are in world space and become roots.
        """
        if node not in self:
            raise KeyError(f"{node!r} is not owned by this registry")
        node.unlink_children()
        if node.parent is not None:
            node.link_parent(None, keep_transform=True)
        del self._nodes[node.node_id]
        logger.debug("Destroyed node %s (id %d)", node.name, node.node_id)
        if self.events is not None:
            self.events.publish(EventType.NODE_DESTROYED, node=node)
        node.node_id = None

    def clear(self) -> None:
        for node in list(self._nodes.values()):
            node.parent = None
            node.children.clear()
            node.node_id = None
        self._nodes.clear()


@dataclass
class SceneContext:
    """Everything a caller hands to the loader and solver instead of globals."""
    events: EventBus = field(default_factory=EventBus)
    registry: Optional[NodeRegistry] = None

    def __post_init__(self):
        if self.registry is None:
            self.registry = NodeRegistry(self.events)
