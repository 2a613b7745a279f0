"""Tests for the evolution loop."""

import pytest

from evos.evolution.loop import EvolutionLoop
from evos.evolution.mutation import ROOT_ID
from evos.exceptions import (
    GenerationNotFoundError,
    InvalidInputError,
    StaleParentError,
)
from evos.types import GenerationStatus, Outcome, SubjectKind

from tests.conftest import FixedScorePolicy


def test_approved_mutation_advances_generation(evolution, gate):
    candidate = evolution.propose_mutation(ROOT_ID, 0.05, seed=42)
    result = evolution.submit_for_validation(candidate, FixedScorePolicy(0.93))

    assert result.validation.outcome == Outcome.APPROVED
    assert result.validation.score == 0.93
    assert result.adopted
    assert evolution.current.id == candidate.id
    assert evolution.current.validation_id == result.validation.record.id
    assert [g.id for g in evolution.history(candidate.id)] == [candidate.id, ROOT_ID]
    assert evolution.lineage.status(ROOT_ID) == GenerationStatus.SUPERSEDED
    assert evolution.lineage.status(candidate.id) == GenerationStatus.CURRENT

    record = gate.log.latest(1)[0]
    assert record.subject_kind == SubjectKind.MUTATION
    assert record.subject_id == candidate.id


def test_modified_mutation_is_adopted(evolution):
    candidate = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    result = evolution.submit_for_validation(candidate, FixedScorePolicy(0.7))
    assert result.validation.outcome == Outcome.MODIFIED
    assert evolution.current.id == candidate.id


def test_rejected_mutation_is_archived(evolution):
    candidate = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    result = evolution.submit_for_validation(candidate, FixedScorePolicy(0.2))

    assert not result.adopted
    assert evolution.current.id == ROOT_ID
    assert evolution.lineage.status(candidate.id) == GenerationStatus.REJECTED
    assert evolution.lineage.rejected() == [result.generation]
    assert [g.id for g in evolution.history(candidate.id)] == [candidate.id, ROOT_ID]


def test_stale_parent_is_refused(evolution):
    first = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    second = evolution.propose_mutation(ROOT_ID, 0.05, seed=2)
    evolution.submit_for_validation(first, FixedScorePolicy(0.95))

    with pytest.raises(StaleParentError):
        evolution.submit_for_validation(second, FixedScorePolicy(0.95))
    assert evolution.current.id == first.id
    assert second.id not in evolution.lineage


def test_fresh_expected_current_does_not_rescue_stale_sibling(evolution, gate):
    first = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    second = evolution.propose_mutation(ROOT_ID, 0.05, seed=2)
    evolution.submit_for_validation(first, FixedScorePolicy(0.95))
    records = len(gate.log)

    with pytest.raises(StaleParentError):
        evolution.submit_for_validation(
            second, FixedScorePolicy(0.95), expected_current=evolution.current.id,
        )
    assert evolution.current.id == first.id
    assert second.id not in evolution.lineage
    assert len(gate.log) == records


def test_explicit_expected_current(evolution, gate):
    candidate = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    with pytest.raises(StaleParentError):
        evolution.submit_for_validation(candidate, FixedScorePolicy(0.95), expected_current="gen-x")
    assert len(gate.log) == 0


def test_resubmission_refused(evolution):
    candidate = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    evolution.submit_for_validation(candidate, FixedScorePolicy(0.1))
    with pytest.raises(InvalidInputError):
        evolution.submit_for_validation(candidate, FixedScorePolicy(0.95))


def test_history_is_restartable_and_immutable(evolution):
    gen1 = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    evolution.submit_for_validation(gen1, FixedScorePolicy(0.95))
    gen2 = evolution.propose_mutation(gen1.id, 0.05, seed=2)
    evolution.submit_for_validation(gen2, FixedScorePolicy(0.95))

    history = evolution.history(gen2.id)
    first = list(history)
    assert list(history) == first

    # grow the tree elsewhere: a dead branch off gen2 and a new head
    dead = evolution.propose_mutation(gen2.id, 0.3, seed=3)
    evolution.submit_for_validation(dead, FixedScorePolicy(0.1))
    gen3 = evolution.propose_mutation(gen2.id, 0.05, seed=4)
    evolution.submit_for_validation(gen3, FixedScorePolicy(0.95))

    again = list(evolution.history(gen2.id))
    assert again == first
    assert [g.id for g in again] == [gen2.id, gen1.id, ROOT_ID]


def test_history_is_lazy(evolution):
    gen1 = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    evolution.submit_for_validation(gen1, FixedScorePolicy(0.95))
    walk = iter(evolution.history(gen1.id))
    assert next(walk).id == gen1.id


def test_history_unknown_generation(evolution):
    with pytest.raises(GenerationNotFoundError):
        evolution.history("gen-missing")
    with pytest.raises(GenerationNotFoundError):
        evolution.propose_mutation("gen-missing", 0.05, seed=1)


def test_default_policy_gates_on_fitness(gate):
    loop = EvolutionLoop(gate, root_fitness=0.4)
    candidate = loop.propose_mutation(ROOT_ID, 0.0, seed=1)
    result = loop.submit_for_validation(candidate, attributes={"harm": True})
    # no regression and in-range rate, but low fitness and declared harm
    assert result.validation.score == pytest.approx(3 / 6)
    assert result.validation.outcome == Outcome.REJECTED


def test_lineage_fitness(evolution):
    assert evolution.lineage_fitness(5) == [0.7]
    gen1 = evolution.propose_mutation(ROOT_ID, 0.05, seed=1)
    evolution.submit_for_validation(gen1, FixedScorePolicy(0.95))
    assert evolution.lineage_fitness(5) == [0.7, gen1.fitness]
    assert evolution.lineage_fitness(1) == [gen1.fitness]
    assert evolution.lineage_fitness(0) == []
