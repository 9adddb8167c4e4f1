"""
Domain models and enums.

This module defines the core domain-level types used across the system:
- Mesh node kinds, nodes and relay links (edges)
- Contact roles and contacts eligible for SMS notification

These are designed as immutable (frozen) dataclasses so they can be shared
safely between the propagation thread, the dispatcher and the event view.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Tuple


class NodeKind(str, Enum):
    """
    Kind of a mesh node.

    Members
    -------
    SENSOR : str
        Detection node. Alerts originate here and are relayed through here.
    GATEWAY : str
        Node with connectivity to the outside notification channel.
    """

    SENSOR = "sensor"
    GATEWAY = "gateway"


class ContactRole(str, Enum):
    """
    Role of a notification recipient.

    Members
    -------
    FARMER : str
        Land owner / resident near the mesh.
    OFFICER : str
        Wildlife or forest officer.
    """

    FARMER = "farmer"
    OFFICER = "officer"


@dataclass(frozen=True)
class Node:
    """
    A node of the mesh topology.

    Parameters
    ----------
    id
        Unique node identifier (e.g., ``"sensor-1"``, ``"gateway-1"``).
    kind
        Sensor or gateway.
    position
        2D coordinate ``(x, y)``. Only used by consumers that draw the mesh.
    """

    id: str
    kind: NodeKind
    position: Tuple[float, float] = (0.0, 0.0)

    @property
    def is_sensor(self) -> bool:
        return self.kind == NodeKind.SENSOR

    @property
    def is_gateway(self) -> bool:
        return self.kind == NodeKind.GATEWAY


@dataclass(frozen=True)
class Edge:
    """
    Direct relay link between two nodes.

    The link is unordered: ``Edge.between("a", "b") == Edge.between("b", "a")``.

    Parameters
    ----------
    nodes
        The two node ids joined by this link.
    """

    nodes: FrozenSet[str]

    @classmethod
    def between(cls, a: str, b: str) -> "Edge":
        if a == b:
            raise ValueError(f"Edge endpoints must differ: {a!r}")
        return cls(nodes=frozenset((a, b)))

    def other(self, node_id: str) -> str:
        """
        Return the endpoint opposite to ``node_id``.

        Raises
        ------
        ValueError
            If ``node_id`` is not an endpoint of this edge.
        """
        if node_id not in self.nodes:
            raise ValueError(f"{node_id!r} is not an endpoint of {sorted(self.nodes)}")
        (rest,) = self.nodes - {node_id}
        return rest

    def as_pair(self) -> Tuple[str, str]:
        a, b = sorted(self.nodes)
        return a, b


@dataclass(frozen=True)
class Contact:
    """
    Notification recipient as read from the contact registry.

    Parameters
    ----------
    id
        Unique contact identifier.
    name
        Display name used in event messages.
    role
        Farmer or officer.
    phone
        Phone number the SMS is addressed to (E.164 recommended).
    consent
        Whether the contact agreed to receive notifications. Only consenting
        contacts are dispatched to.
    """

    id: str
    name: str
    role: ContactRole
    phone: str
    consent: bool = True

    def to_recipient_dict(self) -> Dict[str, Any]:
        """
        Wire form used by the dispatch request (consent is implied).
        """
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "role": self.role.value,
        }
