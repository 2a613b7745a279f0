"""Shared test fixtures — a wired-up core without any presentation layer."""

from __future__ import annotations

import pytest

from evos.agents.registry import AgentRegistry
from evos.clock import LogicalClock
from evos.config import EvosSettings
from evos.events.bus import EventBus
from evos.evolution.loop import EvolutionLoop
from evos.knowledge.fragment import KnowledgeFragment
from evos.knowledge.store import FragmentStore
from evos.mesh.network import EchoMesh
from evos.runtime import EvosRuntime
from evos.sigma.gate import SigmaGate
from evos.sigma.policy import PolicyScore, Proposal, ScoringPolicy

DIM = 4


class FixedScorePolicy(ScoringPolicy):
    """Policy that always returns the same score. No rules involved."""

    def __init__(self, score: float, name: str = "fixed"):
        self.value = score
        self.name = name
        self.calls: list[Proposal] = []

    def evaluate(self, proposal: Proposal) -> PolicyScore:
        self.calls.append(proposal)
        return PolicyScore(score=self.value, rationale=f"fixed at {self.value}",
                           amendments={"review": True})


def make_fragment(
    key: str,
    confidence: float,
    fragment_id: str,
    source: str = "agent-a",
    dim: int = DIM,
) -> KnowledgeFragment:
    return KnowledgeFragment(
        id=fragment_id,
        key=key,
        content=f"{key} from {fragment_id}",
        confidence=confidence,
        source=source,
        embedding=(0.0,) * dim,
    )


@pytest.fixture
def fragment():
    return make_fragment


@pytest.fixture
def clock():
    return LogicalClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def registry():
    return AgentRegistry()


@pytest.fixture
def store(bus, clock):
    return FragmentStore(embedding_dim=DIM, event_bus=bus, clock=clock)


@pytest.fixture
def mesh(registry, bus, clock):
    return EchoMesh(registry, event_bus=bus, clock=clock, hop_bound=3)


@pytest.fixture
def gate(registry, clock):
    return SigmaGate(registry=registry, clock=clock)


@pytest.fixture
def evolution(gate, clock):
    return EvolutionLoop(gate, clock=clock)


@pytest.fixture
def fixed_policy():
    return FixedScorePolicy


@pytest.fixture
def config():
    return EvosSettings(embedding_dim=DIM, seed=42)


@pytest.fixture
def runtime(config):
    return EvosRuntime(config=config)
