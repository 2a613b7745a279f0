"""EvOS Runtime — the composition root of the core.

Owns the logical clock, the seeded random source and the event bus,
and wires registry, store, mesh, gate and evolution loop together.
The presentation layer talks to this object only: it issues commands
and pulls immutable snapshots. Nothing in the core calls back into it.
"""

from __future__ import annotations

import logging
import random
from typing import Any

from pydantic import BaseModel

from evos.agents.registry import AgentRegistry, CognitiveAgent
from evos.clock import LogicalClock
from evos.config import EvosSettings, settings
from evos.events.bus import EventBus
from evos.evolution.loop import EvolutionLoop, SubmissionResult
from evos.evolution.mutation import Generation
from evos.exceptions import NodeNotFoundError
from evos.knowledge.fragment import KnowledgeFragment
from evos.knowledge.store import FragmentStore
from evos.mesh.network import EchoMesh, SyncReport
from evos.mesh.node import EchoNode, EchoNodeView
from evos.mesh.topology import Link, TopologySnapshot
from evos.metrics import MetricsAggregator, SystemMetrics
from evos.sigma.audit import ValidationLog, ValidationRecord
from evos.sigma.gate import SigmaGate, SigmaState, ValidationResult
from evos.sigma.negotiation import Negotiation
from evos.sigma.policy import Proposal, ScoringPolicy
from evos.types import (
    AgentId,
    AgentStatus,
    AgentType,
    ConsensusState,
    GenerationId,
    LogicalKey,
    NegotiationId,
    NodeId,
    Vote,
)

_logger = logging.getLogger(__name__)

DAEDALUS: dict[str, Any] = {
    "agent_id": "daedalus-prime",
    "name": "Daedalus",
    "type": AgentType.DAEDALUS,
    "capabilities": ["code-generation", "creative-synthesis", "ethical-reasoning"],
    "pas_score": 0.92,
    "ethical_alignment": 0.96,
    "learning_rate": 0.15,
    "memory_capacity": 1_000_000,
}


class Snapshot(BaseModel):
    """Everything the presentation layer may read, frozen at one tick."""

    tick: int
    agents: tuple[CognitiveAgent, ...]
    active_agent_id: AgentId | None
    nodes: tuple[EchoNodeView, ...]
    topology: TopologySnapshot
    mesh_health: float
    validations: tuple[ValidationRecord, ...]
    sigma: SigmaState
    current_generation: Generation
    fitness: float
    metrics: SystemMetrics

    model_config = {"frozen": True}


class StepReport(BaseModel):
    tick: int
    sync: SyncReport
    evolution: SubmissionResult | None = None
    metrics: SystemMetrics

    model_config = {"frozen": True}


class EvosRuntime:
    """Injected state for one EvOS instance.

    Usage:
        runtime = EvosRuntime(seed=7)
        await runtime.initialize()
        await runtime.bootstrap()
        report = await runtime.step()
        view = runtime.snapshot()
    """

    def __init__(
        self,
        config: EvosSettings | None = None,
        seed: int | None = None,
        policy: ScoringPolicy | None = None,
        evolution_policy: ScoringPolicy | None = None,
    ) -> None:
        self.config = config if config is not None else settings
        logging.getLogger("evos").setLevel(self.config.log_level.upper())

        self.clock = LogicalClock()
        self.rng = random.Random(self.config.seed if seed is None else seed)
        self.bus = EventBus(history_limit=self.config.event_history_limit)
        self.registry = AgentRegistry()
        self.store = FragmentStore(self.config.embedding_dim, self.bus, self.clock)
        self.mesh = EchoMesh(
            self.registry, self.bus, self.clock,
            hop_bound=self.config.health_hop_bound,
            embedding_dim=self.config.embedding_dim,
        )
        self.gate = SigmaGate(
            registry=self.registry,
            default_policy=policy,
            approval_threshold=self.config.approval_threshold,
            rejection_threshold=self.config.rejection_threshold,
            max_consecutive_rejections=self.config.max_consecutive_rejections,
            initial_autonomy=self.config.initial_autonomy,
            autonomy_smoothing=self.config.autonomy_smoothing,
            window=self.config.approval_window,
            clock=self.clock,
            log=ValidationLog(self.config.audit_db_path),
        )
        self.evolution = EvolutionLoop(
            self.gate,
            policy=evolution_policy,
            clock=self.clock,
            root_fitness=self.config.root_fitness,
            root_mutation_rate=self.config.root_mutation_rate,
        )
        self.aggregator = MetricsAggregator(
            approval_window=self.config.approval_window,
            trend_window=self.config.fitness_trend_window,
        )

    async def initialize(self) -> None:
        """Open the audit mirror, if one is configured."""
        await self.gate.log.initialize()

    async def shutdown(self) -> None:
        await self.gate.log.flush()
        await self.gate.log.close()

    async def bootstrap(self) -> CognitiveAgent:
        """Register and activate the seed agent with its own echo node."""
        agent = await self.register_agent(**DAEDALUS)
        return self.activate_agent(agent.id)

    # ── Agents ───────────────────────────────────────────────────────────────

    async def register_agent(
        self,
        name: str,
        with_node: bool = True,
        **fields: Any,
    ) -> CognitiveAgent:
        """Register an agent and, by default, give it an echo node."""
        agent = self.registry.register(name, **fields)
        if with_node:
            self.mesh.add_node(agent.id)
        await self.bus.emit("agent.registered", {
            "agent_id": agent.id,
            "name": agent.name,
            "type": agent.type.value,
        }, source="runtime", tick=self.clock.now)
        return agent

    def activate_agent(self, agent_id: AgentId) -> CognitiveAgent:
        return self.registry.activate(agent_id)

    def set_agent_status(self, agent_id: AgentId, status: AgentStatus) -> CognitiveAgent:
        return self.registry.transition(agent_id, status)

    def reset_agent(self, agent_id: AgentId) -> CognitiveAgent:
        return self.registry.reset(agent_id)

    def node_for(self, agent_id: AgentId) -> EchoNode:
        """The first echo node owned by an agent."""
        self.registry.get(agent_id)
        nodes = self.mesh.nodes_for_agent(agent_id)
        if not nodes:
            raise NodeNotFoundError(f"Agent {agent_id} owns no echo node")
        return nodes[0]

    # ── Knowledge & mesh ─────────────────────────────────────────────────────

    async def submit_fragment(
        self,
        node_id: NodeId,
        key: LogicalKey,
        content: str,
        confidence: float,
        embedding: list[float] | None = None,
    ) -> KnowledgeFragment:
        """Store a fragment authored by the node's agent and seed that node."""
        node = self.mesh.get(node_id)
        fragment = self.store.new_fragment(
            key, content, confidence, source=node.agent_id, embedding=embedding,
        )
        await self.store.put(fragment, node_id=node_id)
        return fragment

    def link_nodes(self, a: NodeId, b: NodeId, strength: float) -> Link:
        return self.mesh.link_nodes(a, b, strength)

    def unlink_nodes(self, a: NodeId, b: NodeId) -> bool:
        return self.mesh.unlink_nodes(a, b)

    async def sync(self) -> SyncReport:
        return await self.mesh.sync_all()

    async def settle(self) -> list[SyncReport]:
        """Sync until a round adopts nothing, up to the configured bound."""
        return await self.mesh.sync_until_stable(self.config.max_sync_rounds)


    # ── Sigma gate ───────────────────────────────────────────────────────────

    def validate(self, proposal: Proposal, policy: ScoringPolicy | None = None) -> ValidationResult:
        return self.gate.validate(proposal, policy)

    def open_negotiation(
        self,
        participants: list[AgentId],
        proposal: dict[str, Any] | None = None,
        quorum: int | None = None,
    ) -> Negotiation:
        return self.gate.open_negotiation(participants, proposal, quorum)

    def cast_vote(self, negotiation_id: NegotiationId, agent_id: AgentId, vote: Vote | str) -> Negotiation:
        return self.gate.cast_vote(negotiation_id, agent_id, vote)

    def resolve_negotiation(self, negotiation_id: NegotiationId) -> ConsensusState:
        return self.gate.resolve(negotiation_id)

    # ── Evolution ────────────────────────────────────────────────────────────

    def propose_mutation(
        self,
        parent_id: GenerationId | None = None,
        mutation_rate: float | None = None,
        seed: int | None = None,
    ) -> Generation:
        """Propose a child; unspecified inputs come from the head and the runtime rng."""
        parent = self.evolution.get(parent_id) if parent_id else self.evolution.current
        rate = parent.mutation_rate if mutation_rate is None else mutation_rate
        seed = self.rng.getrandbits(32) if seed is None else seed
        return self.evolution.propose_mutation(parent.id, rate, seed)

    async def submit_mutation(
        self,
        candidate: Generation,
        policy: ScoringPolicy | None = None,
        expected_current: GenerationId | None = None,
    ) -> SubmissionResult:
        result = self.evolution.submit_for_validation(candidate, policy, expected_current)
        topic = "evolution.generation_adopted" if result.adopted else "evolution.generation_rejected"
        await self.bus.emit(topic, {
            "generation_id": result.generation.id,
            "parent_id": result.generation.parent_id,
            "fitness": result.generation.fitness,
            "outcome": result.validation.outcome.value,
        }, source="evolution", tick=self.clock.now)
        return result

    # ── Read model & stepping ───────────────────────────────────────────────

    def compute_metrics(self) -> SystemMetrics:
        return self.aggregator.compute(
            self.registry, self.mesh, self.gate, self.evolution, now=self.clock.now,
        )

    def snapshot(self, validations: int = 10) -> Snapshot:
        current = self.evolution.current
        return Snapshot(
            tick=self.clock.now,
            agents=tuple(a.model_copy(deep=True) for a in self.registry.list_agents()),
            active_agent_id=self.registry.active_agent_id,
            nodes=tuple(n.view() for n in self.mesh.nodes()),
            topology=self.mesh.topology.snapshot(),
            mesh_health=self.mesh.mesh_health(),
            validations=tuple(r.model_copy(deep=True) for r in self.gate.log.latest(validations)),
            sigma=self.gate.state(),
            current_generation=current.model_copy(deep=True),
            fitness=current.fitness,
            metrics=self.compute_metrics(),
        )

    async def step(self, policy: ScoringPolicy | None = None, evolve: bool = True) -> StepReport:
        """Advance one logical tick: a sync round, then an evolution attempt."""
        sync = await self.mesh.sync_all()

        submission = None
        if evolve:
            submission = await self._evolve(policy)

        await self.gate.log.flush()
        metrics = self.compute_metrics()
        return StepReport(tick=self.clock.now, sync=sync, evolution=submission, metrics=metrics)

    async def _evolve(self, policy: ScoringPolicy | None) -> SubmissionResult:
        agent_id = self.registry.active_agent_id
        evolving = (
            agent_id is not None
            and self.registry.get(agent_id).status == AgentStatus.ACTIVE
        )
        if evolving:
            self.registry.transition(agent_id, AgentStatus.EVOLVING)
        try:
            candidate = self.propose_mutation()
            return await self.submit_mutation(candidate, policy)
        finally:
            if evolving and self.registry.get(agent_id).status == AgentStatus.EVOLVING:
                self.registry.transition(agent_id, AgentStatus.ACTIVE)
