"""Echo Mesh — eventual agreement of knowledge without a coordinator.

Nodes exchange their knowledge sets across links. Because the per-key
merge is commutative, associative and idempotent, edges can be
processed concurrently and in any order; only writes into a single
node are serialized, by that node's lock.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel

from evos.agents.registry import AgentRegistry
from evos.clock import LogicalClock
from evos.events.bus import Event, EventBus
from evos.exceptions import InvalidInputError, NodeNotFoundError
from evos.knowledge.fragment import KnowledgeFragment, check_fragment, prefer
from evos.knowledge.store import FRAGMENT_STORED
from evos.mesh.crdt import KnowledgeSet, merged
from evos.mesh.node import EchoNode
from evos.mesh.topology import Link, MeshTopology
from evos.types import AgentId, LogicalKey, NodeId, in_unit_interval, new_id

_logger = logging.getLogger(__name__)


class SyncReport(BaseModel):
    """Outcome of one sync round."""

    round: int
    tick: int
    links: int
    adopted: int  # keys that changed across all receiving nodes
    health: float

    model_config = {"frozen": True}

    @property
    def quiescent(self) -> bool:
        return self.adopted == 0


class EchoMesh:
    """Network of echo nodes over a mutable topology.

    Usage:
        mesh = EchoMesh(registry, event_bus=bus, clock=clock)
        a = mesh.add_node("agent-a")
        b = mesh.add_node("agent-b")
        mesh.link_nodes(a.id, b.id, 0.5)
        await mesh.sync_all()
    """

    def __init__(
        self,
        registry: AgentRegistry,
        event_bus: EventBus | None = None,
        clock: LogicalClock | None = None,
        hop_bound: int = 3,
        embedding_dim: int | None = None,
    ) -> None:
        if hop_bound < 1:
            raise ValueError("hop_bound must be at least 1")
        self._registry = registry
        self._bus = event_bus
        self._clock = clock if clock is not None else LogicalClock()
        self.hop_bound = hop_bound
        self.embedding_dim = embedding_dim
        self.topology = MeshTopology()
        self._nodes: dict[NodeId, EchoNode] = {}
        self._rounds = 0
        self.last_report: SyncReport | None = None

        registry.add_reference_guard(self.references_agent)
        if event_bus:
            event_bus.subscribe(FRAGMENT_STORED, self._on_fragment_stored)

    # ── Membership ───────────────────────────────────────────────────────────

    def add_node(
        self,
        agent_id: AgentId,
        node_id: NodeId | None = None,
        consensus_weight: float | None = None,
    ) -> EchoNode:
        """Create a node owned by a registered agent.

        Consensus weight defaults to the agent's sovereignty score.
        """
        agent = self._registry.get(agent_id)
        node_id = node_id or f"echo-{new_id()}"
        if node_id in self._nodes:
            raise InvalidInputError(f"Mesh node {node_id} already exists")
        weight = agent.pas_score if consensus_weight is None else consensus_weight
        if not in_unit_interval(weight):
            raise InvalidInputError(f"Consensus weight {weight} not in [0, 1]")

        node = EchoNode(node_id, agent_id, consensus_weight=weight)
        node.last_sync = self._clock.now
        self._nodes[node_id] = node
        self.topology.add_node(node_id)
        self._refresh_health()
        _logger.info("Added echo node %s for agent %s", node_id, agent_id)
        return node

    def remove_node(self, node_id: NodeId) -> None:
        """Drop a node and its links. In-flight pushes into it are discarded."""
        self._get(node_id)
        del self._nodes[node_id]
        self.topology.remove_node(node_id)
        self._refresh_health()
        _logger.info("Removed echo node %s", node_id)

    def get(self, node_id: NodeId) -> EchoNode:
        return self._get(node_id)

    def nodes(self) -> list[EchoNode]:
        return [self._nodes[n] for n in sorted(self._nodes)]

    def nodes_for_agent(self, agent_id: AgentId) -> list[EchoNode]:
        return [n for n in self.nodes() if n.agent_id == agent_id]

    def references_agent(self, agent_id: AgentId) -> bool:
        return any(n.agent_id == agent_id for n in self._nodes.values())

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    # ── Links ────────────────────────────────────────────────────────────────

    def link_nodes(self, a: NodeId, b: NodeId, strength: float) -> Link:
        link = self.topology.link(a, b, strength)
        self._refresh_health()
        return link

    def unlink_nodes(self, a: NodeId, b: NodeId) -> bool:
        removed = self.topology.unlink(a, b)
        if removed:
            self._refresh_health()
        return removed

    # ── Knowledge exchange ──────────────────────────────────────────────────

    async def ingest(self, node_id: NodeId, fragment: KnowledgeFragment) -> bool:
        """Merge one fragment into a node's replica.

        Malformed fragments are refused with InvalidFragmentError before
        they reach any replica.
        """
        node = self._get(node_id)
        check_fragment(fragment, self.embedding_dim)
        async with node.lock:
            return node.knowledge.offer(fragment)

    async def propagate(self, source: NodeId, target: NodeId) -> int:
        """Merge `source`'s replica into `target`'s. Returns keys changed."""
        src = self._get(source)
        self._get(target)
        changed = await self._push(src.knowledge.entries(), target)
        if target in self._nodes:
            self._nodes[target].last_sync = self._clock.now
        return changed

    async def sync_all(self) -> SyncReport:
        """One round of pairwise exchange over every link, both directions.

        Every push sends the sender's replica as it was when the round
        began, so a node's result is the join of its own state with its
        neighbours' starting states, whatever order the pushes run in.
        """
        links = self.topology.links()
        start = {node_id: node.knowledge.entries() for node_id, node in self._nodes.items()}
        tick = self._clock.tick()
        self._rounds += 1

        pushes = []
        for link in links:
            pushes.append(self._push(start[link.a], link.b))
            pushes.append(self._push(start[link.b], link.a))
        counts = await asyncio.gather(*pushes)

        for node in self._nodes.values():
            node.last_sync = tick
        self._refresh_health()

        report = SyncReport(
            round=self._rounds,
            tick=tick,
            links=len(links),
            adopted=sum(counts),
            health=self.mesh_health(),
        )
        self.last_report = report
        _logger.info(
            "Sync round %d: %d links, %d keys adopted, health=%.3f",
            report.round, report.links, report.adopted, report.health,
        )
        if self._bus:
            await self._bus.emit("mesh.synced", report.model_dump(), source="echo_mesh", tick=tick)
        return report

    async def sync_until_stable(self, max_rounds: int = 32) -> list[SyncReport]:
        """Run rounds until one adopts nothing or `max_rounds` is reached."""
        reports = []
        for _ in range(max_rounds):
            report = await self.sync_all()
            reports.append(report)
            if report.quiescent:
                break
        return reports

    async def _push(self, fragments: dict[LogicalKey, KnowledgeFragment], target: NodeId) -> int:
        await asyncio.sleep(0)  # let other commands interleave between pushes
        node = self._nodes.get(target)
        if node is None:
            _logger.debug("Dropped propagation into removed node %s", target)
            return 0
        async with node.lock:
            return node.knowledge.merge(fragments)

    async def _on_fragment_stored(self, event: Event) -> None:
        fragment: KnowledgeFragment = event.data["fragment"]
        node_id = event.data.get("node_id")
        targets = [node_id] if node_id else [n.id for n in self.nodes_for_agent(fragment.source)]
        for target in targets:
            if target not in self._nodes:
                _logger.warning("Fragment %s addressed to unknown node %s", fragment.id, target)
                continue
            await self.ingest(target, fragment)

    # ── Health & agreement ──────────────────────────────────────────────────

    def mesh_health(self) -> float:
        return self.topology.health(self.hop_bound)

    def agreement(self, key: LogicalKey) -> float:
        """Consensus-weighted share of nodes holding the winning fragment."""
        holders = [n for n in self._nodes.values() if key in n.knowledge]
        if not holders:
            return 0.0
        winner = holders[0].knowledge.get(key)
        for node in holders[1:]:
            winner = prefer(winner, node.knowledge.get(key))

        nodes = list(self._nodes.values())
        total = sum(n.consensus_weight for n in nodes)
        agreeing = [n for n in nodes if n.knowledge.get(key) == winner]
        if total == 0:
            return len(agreeing) / len(nodes)
        return sum(n.consensus_weight for n in agreeing) / total

    def is_converged(self) -> bool:
        """True if every replica holds exactly the same fragments."""
        replicas = [n.knowledge for n in self._nodes.values()]
        return all(r == replicas[0] for r in replicas[1:])

    def union(self) -> KnowledgeSet:
        """The state every replica converges to on a connected mesh."""
        return merged(*(n.knowledge for n in self._nodes.values()))

    def fragment_count(self) -> int:
        return sum(len(n.knowledge) for n in self._nodes.values())

    def _refresh_health(self) -> None:
        for node_id, node in self._nodes.items():
            node.health = self.topology.node_health(node_id, self.hop_bound)

    def _get(self, node_id: NodeId) -> EchoNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(f"No mesh node with id {node_id}")
        return node
