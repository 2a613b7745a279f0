"""Mesh topology — undirected, weighted links between echo nodes."""

from __future__ import annotations

from itertools import combinations

import networkx as nx
from pydantic import BaseModel

from evos.exceptions import InvalidInputError, InvalidStrengthError, NodeNotFoundError
from evos.types import NodeId


class Link(BaseModel):
    a: NodeId
    b: NodeId
    strength: float

    model_config = {"frozen": True}


class TopologySnapshot(BaseModel):
    """Frozen view of the graph at one instant."""

    nodes: tuple[NodeId, ...] = ()
    links: tuple[Link, ...] = ()

    model_config = {"frozen": True}


class MeshTopology:
    """Graph over node ids. Edge attribute `strength` is in (0, 1]."""

    def __init__(self) -> None:
        self._graph = nx.Graph()

    def add_node(self, node_id: NodeId) -> None:
        self._graph.add_node(node_id)

    def remove_node(self, node_id: NodeId) -> None:
        if node_id in self._graph:
            self._graph.remove_node(node_id)

    def link(self, a: NodeId, b: NodeId, strength: float) -> Link:
        """Add or update the edge a–b."""
        if not 0.0 < strength <= 1.0:
            raise InvalidStrengthError(f"Link strength {strength} not in (0, 1]")
        for node_id in (a, b):
            if node_id not in self._graph:
                raise NodeNotFoundError(f"No mesh node with id {node_id}")
        if a == b:
            raise InvalidInputError(f"Cannot link node {a} to itself")
        self._graph.add_edge(a, b, strength=strength)
        return Link(a=min(a, b), b=max(a, b), strength=strength)

    def unlink(self, a: NodeId, b: NodeId) -> bool:
        """Remove the edge a–b. Returns False if there was none."""
        if self._graph.has_edge(a, b):
            self._graph.remove_edge(a, b)
            return True
        return False

    def strength(self, a: NodeId, b: NodeId) -> float | None:
        data = self._graph.get_edge_data(a, b)
        return data["strength"] if data else None

    def neighbors(self, node_id: NodeId) -> list[NodeId]:
        if node_id not in self._graph:
            raise NodeNotFoundError(f"No mesh node with id {node_id}")
        return sorted(self._graph.neighbors(node_id))

    def links(self) -> list[Link]:
        """All edges, each once, in a stable order."""
        result = [
            Link(a=min(a, b), b=max(a, b), strength=data["strength"])
            for a, b, data in self._graph.edges(data=True)
        ]
        return sorted(result, key=lambda link: (link.a, link.b))

    def nodes(self) -> list[NodeId]:
        return sorted(self._graph.nodes)

    def reachable_within(self, node_id: NodeId, max_hops: int) -> set[NodeId]:
        """Other nodes at most `max_hops` edges away."""
        lengths = nx.single_source_shortest_path_length(self._graph, node_id, cutoff=max_hops)
        return {n for n in lengths if n != node_id}

    def health(self, max_hops: int) -> float:
        """Fraction of unordered node pairs within `max_hops` of each other.

        An empty graph has health 0.0; a single node has no pairs and
        counts as fully healthy.
        """
        nodes = self.nodes()
        if not nodes:
            return 0.0
        if len(nodes) == 1:
            return 1.0
        reach = {n: self.reachable_within(n, max_hops) for n in nodes}
        pairs = list(combinations(nodes, 2))
        ok = sum(1 for a, b in pairs if b in reach[a])
        return ok / len(pairs)

    def node_health(self, node_id: NodeId, max_hops: int) -> float:
        """Share of the other nodes this node can reach within `max_hops`."""
        others = len(self._graph) - 1
        if others <= 0:
            return 1.0
        return len(self.reachable_within(node_id, max_hops)) / others

    def snapshot(self) -> TopologySnapshot:
        return TopologySnapshot(nodes=tuple(self.nodes()), links=tuple(self.links()))

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._graph

    def __len__(self) -> int:
        return len(self._graph)
