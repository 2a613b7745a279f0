"""Agent Registry — the process table of cognitive agents.

Every agent known to the core lives here: its archetype, capability
set, scalar metrics and lifecycle status. Other subsystems refer to
agents by id and never hold the objects themselves.
"""

from __future__ import annotations

import logging
from typing import Callable

from pydantic import BaseModel, Field, ValidationError

from evos.agents.state_machine import AgentStatusMachine
from evos.exceptions import (
    AgentInUseError,
    AgentNotFoundError,
    InvalidInputError,
)
from evos.types import AgentId, AgentStatus, AgentType, in_unit_interval, new_id

_logger = logging.getLogger(__name__)

ReferenceGuard = Callable[[AgentId], bool]


class CognitiveAgent(BaseModel):
    """A registered agent. `status` mirrors the agent's status machine."""

    id: AgentId = Field(default_factory=new_id)
    name: str
    type: AgentType = AgentType.CUSTOM
    capabilities: frozenset[str] = Field(default_factory=frozenset)
    pas_score: float = Field(0.5, ge=0.0, le=1.0)  # phase-autonomous sovereignty
    ethical_alignment: float = Field(0.5, ge=0.0, le=1.0)
    learning_rate: float = Field(0.1, ge=0.0, le=1.0)
    memory_capacity: int = Field(1000, gt=0)
    status: AgentStatus = AgentStatus.DORMANT

    model_config = {"validate_assignment": True}


class AgentRegistry:
    """Central registry for all cognitive agents.

    Every agent handed out is a copy. Status changes go through the
    registry, which keeps each agent in step with its status machine.
    """

    def __init__(self) -> None:
        self._agents: dict[AgentId, CognitiveAgent] = {}
        self._machines: dict[AgentId, AgentStatusMachine] = {}
        self._guards: list[ReferenceGuard] = []
        self.active_agent_id: AgentId | None = None

    def register(
        self,
        name: str,
        type: AgentType | str = AgentType.CUSTOM,
        capabilities: set[str] | list[str] | None = None,
        pas_score: float = 0.5,
        ethical_alignment: float = 0.5,
        learning_rate: float = 0.1,
        memory_capacity: int = 1000,
        status: AgentStatus = AgentStatus.DORMANT,
        agent_id: AgentId | None = None,
    ) -> CognitiveAgent:
        """Register a new agent. Metrics outside [0, 1] are rejected."""
        if agent_id is not None and agent_id in self._agents:
            raise InvalidInputError(f"Agent {agent_id} is already registered")
        try:
            agent = CognitiveAgent(
                id=agent_id or new_id(),
                name=name,
                type=type,
                capabilities=frozenset(capabilities or ()),
                pas_score=pas_score,
                ethical_alignment=ethical_alignment,
                learning_rate=learning_rate,
                memory_capacity=memory_capacity,
                status=status,
            )
        except ValidationError as e:
            raise InvalidInputError(f"Invalid agent '{name}': {e}") from e

        machine = AgentStatusMachine(agent.id, initial=agent.status)
        machine.on_transition(self._sync_status)
        self._agents[agent.id] = agent
        self._machines[agent.id] = machine
        _logger.info("Registered agent %s (%s, %s)", agent.id, agent.name, agent.type.value)
        return agent.model_copy()

    def unregister(self, agent_id: AgentId) -> None:
        """Remove an agent. Fails while any mesh node still references it."""
        self._get(agent_id)
        for guard in self._guards:
            if guard(agent_id):
                raise AgentInUseError(f"Agent {agent_id} is still referenced by a mesh node")
        del self._agents[agent_id]
        del self._machines[agent_id]
        if self.active_agent_id == agent_id:
            self.active_agent_id = None

    def add_reference_guard(self, guard: ReferenceGuard) -> None:
        """Install a check that blocks unregistering referenced agents."""
        self._guards.append(guard)

    def get(self, agent_id: AgentId) -> CognitiveAgent:
        return self._get(agent_id).model_copy()

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def list_agents(self) -> list[CognitiveAgent]:
        return [a.model_copy() for a in self._agents.values()]

    def by_status(self, status: AgentStatus) -> list[CognitiveAgent]:
        return [a.model_copy() for a in self._agents.values() if a.status == status]

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def transition(self, agent_id: AgentId, target: AgentStatus) -> CognitiveAgent:
        self._get(agent_id)
        self._machines[agent_id].transition(target)
        return self._agents[agent_id].model_copy()

    def activate(self, agent_id: AgentId) -> CognitiveAgent:
        """Make the agent the active one, waking it if dormant."""
        agent = self._get(agent_id)
        if agent.status == AgentStatus.DORMANT:
            self._machines[agent_id].transition(AgentStatus.ACTIVE)
        self.active_agent_id = agent_id
        return agent.model_copy()

    def mark_error(self, agent_id: AgentId, reason: str = "") -> CognitiveAgent:
        agent = self._get(agent_id)
        if agent.status != AgentStatus.ERROR:
            self._machines[agent_id].transition(AgentStatus.ERROR)
            _logger.warning("Agent %s moved to error: %s", agent_id, reason or "unspecified")
        return agent.model_copy()

    def reset(self, agent_id: AgentId) -> CognitiveAgent:
        """Explicitly leave the error status (back to dormant)."""
        self._get(agent_id)
        self._machines[agent_id].reset()
        return self._agents[agent_id].model_copy()

    def update_metrics(
        self,
        agent_id: AgentId,
        pas_score: float | None = None,
        ethical_alignment: float | None = None,
        learning_rate: float | None = None,
    ) -> CognitiveAgent:
        agent = self._get(agent_id)
        updates = {
            "pas_score": pas_score,
            "ethical_alignment": ethical_alignment,
            "learning_rate": learning_rate,
        }
        for field, value in updates.items():
            if value is not None and not in_unit_interval(value):
                raise InvalidInputError(
                    f"Invalid {field} for agent {agent_id}: {value} not in [0, 1]"
                )
        for field, value in updates.items():
            if value is not None:
                setattr(agent, field, value)
        return agent.model_copy()

    def _sync_status(self, agent_id: AgentId, old: AgentStatus, new: AgentStatus) -> None:
        self._agents[agent_id].status = new
        _logger.info("Agent %s: %s -> %s", agent_id, old.value, new.value)

    def _get(self, agent_id: AgentId) -> CognitiveAgent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"No agent with id {agent_id}")
        return agent
