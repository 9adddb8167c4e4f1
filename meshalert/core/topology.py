"""
Mesh topology model.

The topology is configuration, not runtime state: nodes and relay links are
fixed once built and there are no mutation operations.

Relay routes are resolved per origin sensor:

1) If a static relay path is configured for the origin, it is replayed as-is
   (the reference mesh relays ``sensor-1`` through ``sensor-2``, ``sensor-3``
   and ``sensor-4``).
2) Otherwise a breadth-first shortest path over the edges to the nearest
   gateway is used. Neighbours are visited in sorted id order so the path is
   deterministic for a given topology.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from meshalert.domain.errors import UnknownNode
from meshalert.domain.models import Edge, Node, NodeKind


@dataclass(frozen=True)
class Route:
    """
    Resolved relay route for one origin sensor.

    Parameters
    ----------
    origin
        Sensor the alert starts at.
    hops
        Intermediate relay node ids, in order. Excludes origin and gateway.
    gateway_id
        Gateway the route ends at.
    """

    origin: str
    hops: Tuple[str, ...]
    gateway_id: str


@dataclass
class Topology:
    """
    Static description of mesh nodes and their connectivity.

    Parameters
    ----------
    node_list
        Nodes in configuration order. Ids must be unique.
    edge_set
        Relay links. Both endpoints must be known nodes.
    static_paths
        Optional fixed relay path per origin sensor id.
    default_gateway
        Gateway used by static paths. Defaults to the first configured gateway.

    Raises
    ------
    ValueError
        If ids are duplicated, an edge or static path references an unknown
        node, a static path routes through a gateway, or no gateway exists.
    """

    node_list: Sequence[Node]
    edge_set: Iterable[Edge] = ()
    static_paths: Mapping[str, Sequence[str]] = field(default_factory=dict)
    default_gateway: Optional[str] = None

    _by_id: Dict[str, Node] = field(default_factory=dict, init=False, repr=False)
    _adjacency: Dict[str, Set[str]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.node_list = tuple(self.node_list)
        self.edge_set = frozenset(self.edge_set)
        self.static_paths = {k: tuple(v) for k, v in self.static_paths.items()}

        for n in self.node_list:
            if n.id in self._by_id:
                raise ValueError(f"Duplicate node id: {n.id!r}")
            self._by_id[n.id] = n
            self._adjacency[n.id] = set()

        for e in self.edge_set:
            a, b = e.as_pair()
            for end in (a, b):
                if end not in self._by_id:
                    raise ValueError(f"Edge {a}-{b} references unknown node {end!r}")
            self._adjacency[a].add(b)
            self._adjacency[b].add(a)

        gateways = self.gateways()
        if not gateways:
            raise ValueError("Topology must contain at least one gateway")

        if self.default_gateway is None:
            self.default_gateway = gateways[0].id
        elif not self._is_kind(self.default_gateway, NodeKind.GATEWAY):
            raise ValueError(f"Default gateway {self.default_gateway!r} is not a gateway node")

        for origin, path in self.static_paths.items():
            if not self._is_kind(origin, NodeKind.SENSOR):
                raise ValueError(f"Static path origin {origin!r} is not a sensor node")
            for hop in path:
                if hop not in self._by_id:
                    raise ValueError(f"Static path for {origin!r} references unknown node {hop!r}")
                if self._by_id[hop].is_gateway:
                    raise ValueError(f"Static path for {origin!r} must end before the gateway, got {hop!r}")

    def _is_kind(self, node_id: str, kind: NodeKind) -> bool:
        n = self._by_id.get(node_id)
        return n is not None and n.kind == kind

    # --- Queries ---
    def nodes(self) -> List[Node]:
        return list(self.node_list)

    def edges(self) -> Set[Edge]:
        return set(self.edge_set)

    def node(self, node_id: str) -> Optional[Node]:
        return self._by_id.get(node_id)

    def sensors(self) -> List[Node]:
        return [n for n in self.node_list if n.is_sensor]

    def gateways(self) -> List[Node]:
        return [n for n in self.node_list if n.is_gateway]

    def neighbours(self, node_id: str) -> List[str]:
        return sorted(self._adjacency.get(node_id, ()))

    # --- Routing ---
    def require_sensor(self, node_id: str) -> Node:
        """
        Return the sensor node for ``node_id``.

        Raises
        ------
        UnknownNode
            If the node does not exist or is not a sensor.
        """
        n = self._by_id.get(node_id)
        if n is None:
            raise UnknownNode(node_id)
        if not n.is_sensor:
            raise UnknownNode(node_id, reason="not a sensor node")
        return n

    def route(self, origin: str) -> Route:
        """
        Resolve the relay route from ``origin`` to a gateway.

        Raises
        ------
        UnknownNode
            If ``origin`` is not a sensor, or no gateway is reachable from it.
        """
        self.require_sensor(origin)

        static = self.static_paths.get(origin)
        if static is not None:
            return Route(origin=origin, hops=tuple(static), gateway_id=str(self.default_gateway))

        path = self._shortest_path_to_gateway(origin)
        if path is None:
            raise UnknownNode(origin, reason="no gateway reachable from node")
        return Route(origin=origin, hops=tuple(path[1:-1]), gateway_id=path[-1])

    def relay_path(self, origin: str) -> List[str]:
        """
        Ordered intermediate node ids for ``origin``, ending before the gateway.
        """
        return list(self.route(origin).hops)

    def _shortest_path_to_gateway(self, origin: str) -> Optional[List[str]]:
        prev: Dict[str, Optional[str]] = {origin: None}
        q = deque([origin])
        while q:
            cur = q.popleft()
            if self._by_id[cur].is_gateway:
                path = [cur]
                while prev[path[-1]] is not None:
                    path.append(prev[path[-1]])  # type: ignore[arg-type]
                path.reverse()
                return path
            for nxt in self.neighbours(cur):
                if nxt not in prev:
                    prev[nxt] = cur
                    q.append(nxt)
        return None


def default_topology() -> Topology:
    """
    Reference mesh: four sensors relaying to one gateway.

    ``sensor-1`` replays the fixed relay path ``sensor-2 -> sensor-3 -> sensor-4``;
    every other sensor routes by shortest path.
    """
    nodes = [
        Node("sensor-1", NodeKind.SENSOR, (100.0, 100.0)),
        Node("sensor-2", NodeKind.SENSOR, (250.0, 150.0)),
        Node("sensor-3", NodeKind.SENSOR, (400.0, 100.0)),
        Node("sensor-4", NodeKind.SENSOR, (300.0, 250.0)),
        Node("gateway-1", NodeKind.GATEWAY, (550.0, 200.0)),
    ]
    edges = [
        Edge.between("sensor-1", "sensor-2"),
        Edge.between("sensor-2", "sensor-3"),
        Edge.between("sensor-2", "sensor-4"),
        Edge.between("sensor-3", "gateway-1"),
        Edge.between("sensor-4", "gateway-1"),
    ]
    return Topology(
        node_list=nodes,
        edge_set=edges,
        static_paths={"sensor-1": ["sensor-2", "sensor-3", "sensor-4"]},
        default_gateway="gateway-1",
    )
