"""Tests for multi-agent negotiations."""

import pytest

from evos.exceptions import (
    AgentNotFoundError,
    AlreadyResolvedError,
    EmptyParticipantsError,
    InvalidInputError,
    NotAParticipantError,
    UnknownNegotiationError,
)
from evos.sigma.gate import SigmaGate
from evos.types import ConsensusState, Outcome, SubjectKind, Vote

FIVE = ["a1", "a2", "a3", "a4", "a5"]


@pytest.fixture
def sigma():
    return SigmaGate()


def test_third_accept_reaches_consensus(sigma):
    neg = sigma.open_negotiation(FIVE, {"topic": "share k1"})
    assert neg.quorum == 3

    sigma.cast_vote(neg.id, "a1", Vote.ACCEPT)
    neg = sigma.cast_vote(neg.id, "a2", "accept")
    assert neg.state == ConsensusState.PENDING
    neg = sigma.cast_vote(neg.id, "a3", Vote.ACCEPT)

    assert neg.state == ConsensusState.REACHED
    assert sigma.resolve(neg.id) == ConsensusState.REACHED


def test_third_reject_fails_consensus(sigma):
    neg = sigma.open_negotiation(FIVE)
    sigma.cast_vote(neg.id, "a1", Vote.REJECT)
    sigma.cast_vote(neg.id, "a2", Vote.ACCEPT)
    neg = sigma.cast_vote(neg.id, "a3", Vote.REJECT)
    assert neg.state == ConsensusState.PENDING
    neg = sigma.cast_vote(neg.id, "a4", Vote.REJECT)

    assert neg.state == ConsensusState.FAILED


def test_votes_after_resolution_fail(sigma):
    neg = sigma.open_negotiation(["a1"])
    sigma.cast_vote(neg.id, "a1", Vote.ACCEPT)
    with pytest.raises(AlreadyResolvedError):
        sigma.cast_vote(neg.id, "a1", Vote.REJECT)


def test_revote_overwrites(sigma):
    neg = sigma.open_negotiation(FIVE)
    sigma.cast_vote(neg.id, "a1", Vote.REJECT)
    neg = sigma.cast_vote(neg.id, "a1", Vote.ACCEPT)
    assert neg.votes["a1"] == Vote.ACCEPT
    assert neg.rejects == 0


def test_resolve_counts_pending_as_non_accept(sigma):
    neg = sigma.open_negotiation(FIVE)
    sigma.cast_vote(neg.id, "a1", Vote.ACCEPT)
    sigma.cast_vote(neg.id, "a2", Vote.ACCEPT)

    assert sigma.resolve(neg.id) == ConsensusState.FAILED
    assert sigma.resolve(neg.id) == ConsensusState.FAILED
    with pytest.raises(AlreadyResolvedError):
        sigma.cast_vote(neg.id, "a3", Vote.ACCEPT)


def test_resolution_is_audited_and_archived(sigma):
    neg = sigma.open_negotiation(["a1", "a2", "a3"])
    assert sigma.state().negotiation_active is True

    sigma.cast_vote(neg.id, "a1", Vote.ACCEPT)
    neg = sigma.cast_vote(neg.id, "a2", Vote.ACCEPT)

    record = sigma.log.latest(1)[0]
    assert record.subject_kind == SubjectKind.NEGOTIATION
    assert record.subject_id == neg.id
    assert record.outcome == Outcome.APPROVED
    assert sigma.open_negotiations() == []
    assert sigma.archived_negotiations() == [neg]
    assert sigma.state().consensus_reached is True
    assert sigma.state().negotiation_active is False


def test_custom_quorum(sigma):
    neg = sigma.open_negotiation(FIVE, quorum=5)
    for agent in FIVE[:4]:
        neg = sigma.cast_vote(neg.id, agent, Vote.ACCEPT)
    assert neg.state == ConsensusState.PENDING
    neg = sigma.cast_vote(neg.id, "a5", Vote.ACCEPT)
    assert neg.state == ConsensusState.REACHED

    with pytest.raises(InvalidInputError):
        sigma.open_negotiation(FIVE, quorum=6)


def test_empty_participants(sigma):
    with pytest.raises(EmptyParticipantsError):
        sigma.open_negotiation([])


def test_duplicate_participants_collapse(sigma):
    neg = sigma.open_negotiation(["a1", "a1", "a2"])
    assert neg.participants == ("a1", "a2")
    assert neg.quorum == 2


def test_unknown_negotiation_and_participant(sigma):
    with pytest.raises(UnknownNegotiationError):
        sigma.cast_vote("nope", "a1", Vote.ACCEPT)
    with pytest.raises(UnknownNegotiationError):
        sigma.resolve("nope")

    neg = sigma.open_negotiation(FIVE)
    with pytest.raises(NotAParticipantError):
        sigma.cast_vote(neg.id, "outsider", Vote.ACCEPT)


def test_invalid_votes(sigma):
    neg = sigma.open_negotiation(FIVE)
    with pytest.raises(InvalidInputError):
        sigma.cast_vote(neg.id, "a1", Vote.PENDING)
    with pytest.raises(InvalidInputError):
        sigma.cast_vote(neg.id, "a1", "maybe")


def test_registry_checks_participants(registry, gate):
    agent = registry.register("A")
    gate.open_negotiation([agent.id])
    with pytest.raises(AgentNotFoundError):
        gate.open_negotiation([agent.id, "ghost"])


def test_returned_negotiations_are_detached(sigma):
    neg = sigma.open_negotiation(FIVE)
    neg.votes["a1"] = Vote.ACCEPT
    neg.state = ConsensusState.REACHED

    stored = sigma.get_negotiation(neg.id)
    assert stored.state == ConsensusState.PENDING
    assert stored.votes["a1"] == Vote.PENDING

    after = sigma.cast_vote(neg.id, "a1", Vote.REJECT)
    after.votes["a2"] = Vote.ACCEPT
    sigma.open_negotiations()[0].state = ConsensusState.FAILED

    stored = sigma.get_negotiation(neg.id)
    assert stored.votes == {"a1": Vote.REJECT, "a2": Vote.PENDING, "a3": Vote.PENDING,
                            "a4": Vote.PENDING, "a5": Vote.PENDING}
    assert stored.state == ConsensusState.PENDING
    assert sigma.resolve(neg.id) == ConsensusState.FAILED
