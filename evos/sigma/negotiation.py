"""Negotiations — multi-agent votes on a shared proposal."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from evos.types import AgentId, ConsensusState, NegotiationId, Vote, new_id


def majority(participants: int) -> int:
    """Strict majority quorum."""
    return participants // 2 + 1


class Negotiation(BaseModel):
    """Per-participant votes and the consensus they imply.

    The state is decided the moment enough accepts reach the quorum, or
    enough rejects make the quorum unreachable.
    """

    id: NegotiationId = Field(default_factory=new_id)
    participants: tuple[AgentId, ...]
    proposal: dict[str, Any] = Field(default_factory=dict)
    quorum: int
    votes: dict[AgentId, Vote] = Field(default_factory=dict)
    state: ConsensusState = ConsensusState.PENDING
    opened_at: int = 0
    resolved_at: int | None = None

    @property
    def resolved(self) -> bool:
        return self.state != ConsensusState.PENDING

    @property
    def accepts(self) -> int:
        return sum(1 for v in self.votes.values() if v == Vote.ACCEPT)

    @property
    def rejects(self) -> int:
        return sum(1 for v in self.votes.values() if v == Vote.REJECT)

    @property
    def pending(self) -> int:
        return sum(1 for v in self.votes.values() if v == Vote.PENDING)

    def decided(self) -> ConsensusState:
        """The state implied by the votes cast so far."""
        if self.accepts >= self.quorum:
            return ConsensusState.REACHED
        if self.rejects > len(self.participants) - self.quorum:
            return ConsensusState.FAILED
        return ConsensusState.PENDING

    def final(self) -> ConsensusState:
        """The state if voting closed now: pending votes count as non-accepts."""
        if self.accepts >= self.quorum:
            return ConsensusState.REACHED
        return ConsensusState.FAILED
