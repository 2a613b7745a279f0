"""Tests for the agent registry."""

import pytest

from evos.agents.registry import AgentRegistry
from evos.exceptions import (
    AgentInUseError,
    AgentNotFoundError,
    AgentStateError,
    InvalidInputError,
)
from evos.types import AgentStatus, AgentType


def test_register_and_get():
    registry = AgentRegistry()
    agent = registry.register(
        "Alice",
        type="alice",
        capabilities=["reasoning", "reasoning", "memory"],
        pas_score=0.88,
    )

    assert registry.get(agent.id) == agent
    assert agent.type == AgentType.ALICE
    assert agent.capabilities == frozenset({"reasoning", "memory"})
    assert agent.status == AgentStatus.DORMANT
    assert agent.id in registry
    assert len(registry) == 1


def test_register_rejects_out_of_range_metrics():
    registry = AgentRegistry()
    with pytest.raises(InvalidInputError):
        registry.register("Broken", pas_score=1.5)
    with pytest.raises(InvalidInputError):
        registry.register("Broken", memory_capacity=0)
    assert len(registry) == 0


def test_register_duplicate_id():
    registry = AgentRegistry()
    registry.register("A", agent_id="a1")
    with pytest.raises(InvalidInputError, match="already registered"):
        registry.register("B", agent_id="a1")


def test_unknown_agent():
    registry = AgentRegistry()
    with pytest.raises(AgentNotFoundError):
        registry.get("ghost")


def test_activate_wakes_dormant_agent():
    registry = AgentRegistry()
    agent = registry.register("Daedalus", type=AgentType.DAEDALUS)
    agent = registry.activate(agent.id)

    assert agent.status == AgentStatus.ACTIVE
    assert registry.active_agent_id == agent.id


def test_transition_updates_model_status():
    registry = AgentRegistry()
    agent = registry.register("A", status=AgentStatus.ACTIVE)
    registry.transition(agent.id, AgentStatus.EVOLVING)
    assert registry.get(agent.id).status == AgentStatus.EVOLVING
    assert [a.id for a in registry.by_status(AgentStatus.EVOLVING)] == [agent.id]


def test_mark_error_and_reset():
    registry = AgentRegistry()
    agent = registry.register("A", status=AgentStatus.ACTIVE)
    assert registry.mark_error(agent.id, "test").status == AgentStatus.ERROR

    with pytest.raises(AgentStateError):
        registry.transition(agent.id, AgentStatus.ACTIVE)

    assert registry.reset(agent.id).status == AgentStatus.DORMANT


def test_mark_error_is_idempotent():
    registry = AgentRegistry()
    agent = registry.register("A")
    registry.mark_error(agent.id)
    registry.mark_error(agent.id)
    assert registry.get(agent.id).status == AgentStatus.ERROR


def test_update_metrics_all_or_nothing():
    registry = AgentRegistry()
    agent = registry.register("A", pas_score=0.5, learning_rate=0.1)

    with pytest.raises(InvalidInputError):
        registry.update_metrics(agent.id, pas_score=0.7, learning_rate=2.0)
    assert registry.get(agent.id).pas_score == 0.5

    assert registry.update_metrics(agent.id, pas_score=0.7).pas_score == 0.7
    assert registry.get(agent.id).pas_score == 0.7


def test_unregister_blocked_by_guard():
    registry = AgentRegistry()
    agent = registry.register("A")
    referenced = {agent.id}
    registry.add_reference_guard(lambda agent_id: agent_id in referenced)

    with pytest.raises(AgentInUseError):
        registry.unregister(agent.id)

    referenced.clear()
    registry.unregister(agent.id)
    assert agent.id not in registry


def test_handed_out_agents_cannot_bypass_status_machine():
    registry = AgentRegistry()
    agent = registry.register("A", status=AgentStatus.ACTIVE)
    registry.mark_error(agent.id, "test")

    copy = registry.get(agent.id)
    copy.status = AgentStatus.ACTIVE
    agent.status = AgentStatus.EVOLVING
    for listed in registry.list_agents():
        listed.pas_score = 1.0

    stored = registry.get(agent.id)
    assert stored.status == AgentStatus.ERROR
    assert stored.pas_score == 0.5
    with pytest.raises(AgentStateError):
        registry.transition(agent.id, AgentStatus.EVOLVING)
