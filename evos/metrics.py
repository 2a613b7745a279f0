"""System metrics — derived, never stored.

Everything here is recomputed from the other components each time it
is asked for. The aggregator holds window sizes and nothing else.
"""

from __future__ import annotations

from pydantic import BaseModel

from evos.agents.registry import AgentRegistry
from evos.evolution.loop import EvolutionLoop
from evos.mesh.network import EchoMesh
from evos.sigma.gate import SigmaGate
from evos.types import clamp01


class SystemMetrics(BaseModel):
    tick: int = 0
    mesh_health: float = 0.0
    approval_rate: float = 1.0
    fitness_trend: float = 0.0  # fitness per generation
    latency: float = 0.0  # mean ticks since each node last synced
    throughput: int = 0  # keys adopted in the last sync round
    memory_usage: float = 0.0
    ethical_compliance: float = 1.0
    evolution_rate: float = 0.0

    model_config = {"frozen": True}


def slope(values: list[float]) -> float:
    """Least-squares slope of `values` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    num = sum((i - mean_x) * (y - mean_y) for i, y in enumerate(values))
    den = sum((i - mean_x) ** 2 for i in range(n))
    return num / den


class MetricsAggregator:
    def __init__(self, approval_window: int = 50, trend_window: int = 10) -> None:
        self.approval_window = approval_window
        self.trend_window = trend_window

    def compute(
        self,
        registry: AgentRegistry,
        mesh: EchoMesh,
        gate: SigmaGate,
        evolution: EvolutionLoop,
        now: int = 0,
    ) -> SystemMetrics:
        nodes = mesh.nodes()
        latency = sum(now - n.last_sync for n in nodes) / len(nodes) if nodes else 0.0

        owners = {n.agent_id for n in nodes}
        capacity = sum(registry.get(agent_id).memory_capacity for agent_id in owners)
        memory_usage = clamp01(mesh.fragment_count() / capacity) if capacity else 0.0

        return SystemMetrics(
            tick=now,
            mesh_health=mesh.mesh_health(),
            approval_rate=gate.log.approval_rate(self.approval_window),
            fitness_trend=slope(evolution.lineage_fitness(self.trend_window)),
            latency=latency,
            throughput=mesh.last_report.adopted if mesh.last_report else 0,
            memory_usage=memory_usage,
            ethical_compliance=gate.log.mean_score(self.approval_window),
            evolution_rate=evolution.current.mutation_rate,
        )
