"""Sigma Gate — the ethics and consensus checkpoint.

Every agent- or evolution-originated action passes through here before
it takes effect. The gate scores the proposal with a pluggable policy,
maps the score onto approved / modified / rejected, and appends one
audit record per call. It also runs multi-agent negotiations to a
quorum and keeps the autonomy level the dashboard displays.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from pydantic import BaseModel

from evos.agents.registry import AgentRegistry
from evos.clock import LogicalClock
from evos.exceptions import (
    AgentNotFoundError,
    AlreadyResolvedError,
    EmptyParticipantsError,
    InvalidInputError,
    NotAParticipantError,
    PolicyEvaluationError,
    PolicyViolationError,
    UnknownNegotiationError,
)
from evos.sigma.audit import ValidationLog, ValidationRecord
from evos.sigma.negotiation import Negotiation, majority
from evos.sigma.policy import Proposal, ScoringPolicy, ethics_policy
from evos.types import (
    AgentId,
    ConsensusState,
    NegotiationId,
    Outcome,
    SubjectKind,
    Vote,
    clamp01,
)

_logger = logging.getLogger(__name__)


class ValidationResult(BaseModel):
    """What `validate` hands back: the record plus convenience accessors."""

    record: ValidationRecord

    model_config = {"frozen": True}

    @property
    def outcome(self) -> Outcome:
        return self.record.outcome

    @property
    def score(self) -> float:
        return self.record.score

    @property
    def passed(self) -> bool:
        return self.record.passed

    @property
    def amended_payload(self) -> dict[str, Any] | None:
        return self.record.amended_payload


class SigmaState(BaseModel):
    """Read model of the gate for snapshots."""

    ethical_validation: float
    autonomy_level: float
    negotiation_active: bool
    consensus_reached: bool
    validations: int
    open_negotiations: int

    model_config = {"frozen": True}


class SigmaGate:
    """Validates proposals and runs negotiations.

    Usage:
        gate = SigmaGate(registry=registry)
        result = gate.validate(Proposal(subject_id="a1", attributes={...}))
        if result.passed:
            ...
    """

    def __init__(
        self,
        registry: AgentRegistry | None = None,
        default_policy: ScoringPolicy | None = None,
        approval_threshold: float = 0.9,
        rejection_threshold: float = 0.6,
        max_consecutive_rejections: int = 3,
        initial_autonomy: float = 0.8,
        autonomy_smoothing: float = 0.2,
        window: int = 50,
        clock: LogicalClock | None = None,
        log: ValidationLog | None = None,
    ) -> None:
        if not 0.0 <= rejection_threshold <= approval_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= rejection <= approval <= 1"
            )
        self._registry = registry
        self.default_policy = default_policy or ethics_policy()
        self.approval_threshold = approval_threshold
        self.rejection_threshold = rejection_threshold
        self.max_consecutive_rejections = max_consecutive_rejections
        self.autonomy_smoothing = autonomy_smoothing
        self.window = window
        self._clock = clock if clock is not None else LogicalClock()
        self.log = log if log is not None else ValidationLog()
        self._autonomy = clamp01(initial_autonomy)
        self._strikes: dict[AgentId, int] = defaultdict(int)
        self._negotiations: dict[NegotiationId, Negotiation] = {}
        self._archive: dict[NegotiationId, Negotiation] = {}
        self._last_consensus: ConsensusState | None = None

    # ── Validation ───────────────────────────────────────────────────────────

    def classify(self, score: float) -> Outcome:
        if score >= self.approval_threshold:
            return Outcome.APPROVED
        if score < self.rejection_threshold:
            return Outcome.REJECTED
        return Outcome.MODIFIED

    def validate(
        self,
        proposal: Proposal,
        policy: ScoringPolicy | None = None,
    ) -> ValidationResult:
        """Score a proposal and record the decision.

        A policy that raises still leaves a rejected record behind; the
        failure is then re-raised as PolicyEvaluationError.
        """
        policy = policy or self.default_policy
        try:
            verdict = policy.evaluate(proposal)
        except Exception as e:
            self._record(proposal, policy, 0.0, Outcome.REJECTED,
                         f"policy evaluation failed: {e}", None)
            raise PolicyEvaluationError(
                f"Policy '{policy.name}' failed on proposal {proposal.id}: {e}"
            ) from e

        outcome = self.classify(verdict.score)
        amended = None
        if outcome == Outcome.MODIFIED:
            amended = {
                **proposal.payload,
                "amendments": dict(verdict.amendments),
                "conditional_on_score": verdict.score,
            }
        record = self._record(proposal, policy, verdict.score, outcome, verdict.rationale, amended)
        return ValidationResult(record=record.model_copy(deep=True))

    def enforce(
        self,
        proposal: Proposal,
        policy: ScoringPolicy | None = None,
    ) -> ValidationResult:
        """Validate and raise PolicyViolationError on rejection."""
        result = self.validate(proposal, policy)
        if result.outcome == Outcome.REJECTED:
            raise PolicyViolationError(
                f"Proposal {proposal.id} for {proposal.subject_id} rejected "
                f"(score {result.score:.3f}): {result.record.rationale}"
            )
        return result

    def _record(
        self,
        proposal: Proposal,
        policy: ScoringPolicy,
        score: float,
        outcome: Outcome,
        rationale: str,
        amended: dict[str, Any] | None,
    ) -> ValidationRecord:
        record = self.log.append(
            tick=self._clock.now,
            subject_id=proposal.subject_id,
            subject_kind=proposal.subject_kind,
            proposal_id=proposal.id,
            score=clamp01(score),
            rationale=rationale,
            outcome=outcome,
            policy=policy.name,
            amended_payload=amended,
        )
        self._autonomy += self.autonomy_smoothing * (record.score - self._autonomy)

        if outcome == Outcome.REJECTED:
            _logger.warning(
                "Rejected %s %s (score=%.3f): %s",
                proposal.subject_kind.value, proposal.subject_id, record.score, rationale,
            )
        else:
            _logger.info(
                "%s %s %s (score=%.3f)",
                outcome.value.capitalize(), proposal.subject_kind.value,
                proposal.subject_id, record.score,
            )

        if proposal.subject_kind == SubjectKind.AGENT:
            self._track_strikes(proposal.subject_id, outcome)
        return record

    def _track_strikes(self, agent_id: AgentId, outcome: Outcome) -> None:
        if outcome != Outcome.REJECTED:
            self._strikes[agent_id] = 0
            return
        self._strikes[agent_id] += 1
        if (
            self._registry is not None
            and agent_id in self._registry
            and self._strikes[agent_id] >= self.max_consecutive_rejections
        ):
            self._registry.mark_error(
                agent_id, f"{self._strikes[agent_id]} consecutive rejected proposals"
            )
            self._strikes[agent_id] = 0

    def strikes(self, agent_id: AgentId) -> int:
        return self._strikes.get(agent_id, 0)

    # ── Negotiation ──────────────────────────────────────────────────────────

    def open_negotiation(
        self,
        participants: list[AgentId] | tuple[AgentId, ...],
        proposal: dict[str, Any] | None = None,
        quorum: int | None = None,
    ) -> Negotiation:
        unique = tuple(dict.fromkeys(participants))
        if not unique:
            raise EmptyParticipantsError("A negotiation needs at least one participant")
        if self._registry is not None:
            for agent_id in unique:
                if agent_id not in self._registry:
                    raise AgentNotFoundError(f"No agent with id {agent_id}")
        quorum = majority(len(unique)) if quorum is None else quorum
        if not 1 <= quorum <= len(unique):
            raise InvalidInputError(f"Quorum {quorum} out of range for {len(unique)} participants")

        negotiation = Negotiation(
            participants=unique,
            proposal=dict(proposal or {}),
            quorum=quorum,
            votes={agent_id: Vote.PENDING for agent_id in unique},
            opened_at=self._clock.now,
        )
        self._negotiations[negotiation.id] = negotiation
        _logger.info(
            "Opened negotiation %s with %d participants (quorum %d)",
            negotiation.id, len(unique), quorum,
        )
        return negotiation.model_copy(deep=True)

    def cast_vote(self, negotiation_id: NegotiationId, agent_id: AgentId, vote: Vote | str) -> Negotiation:
        """Record a vote. A re-vote overwrites; a deciding vote resolves.

        Returns a detached copy of the negotiation after the vote.
        """
        negotiation = self._find(negotiation_id)
        if negotiation.resolved:
            raise AlreadyResolvedError(f"Negotiation {negotiation_id} is already resolved")
        if agent_id not in negotiation.votes:
            raise NotAParticipantError(
                f"Agent {agent_id} is not a participant of negotiation {negotiation_id}"
            )
        try:
            vote = Vote(vote)
        except ValueError as e:
            raise InvalidInputError(f"Unknown vote {vote!r}") from e
        if vote == Vote.PENDING:
            raise InvalidInputError("A cast vote must be accept or reject")

        negotiation.votes[agent_id] = vote
        state = negotiation.decided()
        if state != ConsensusState.PENDING:
            self._close(negotiation, state)
        return negotiation.model_copy(deep=True)

    def resolve(self, negotiation_id: NegotiationId) -> ConsensusState:
        """Close a negotiation now; pending votes do not count as accepts."""
        negotiation = self._find(negotiation_id)
        if negotiation.resolved:
            return negotiation.state
        self._close(negotiation, negotiation.final())
        return negotiation.state

    def get_negotiation(self, negotiation_id: NegotiationId) -> Negotiation:
        """A copy of an open or archived negotiation."""
        return self._find(negotiation_id).model_copy(deep=True)

    def open_negotiations(self) -> list[Negotiation]:
        return [n.model_copy(deep=True) for n in self._negotiations.values()]

    def archived_negotiations(self) -> list[Negotiation]:
        return [n.model_copy(deep=True) for n in self._archive.values()]

    def _find(self, negotiation_id: NegotiationId) -> Negotiation:
        negotiation = self._negotiations.get(negotiation_id)
        if negotiation is None:
            negotiation = self._archive.get(negotiation_id)
        if negotiation is None:
            raise UnknownNegotiationError(f"No negotiation with id {negotiation_id}")
        return negotiation

    def _close(self, negotiation: Negotiation, state: ConsensusState) -> None:
        negotiation.state = state
        negotiation.resolved_at = self._clock.now
        self._negotiations.pop(negotiation.id, None)
        self._archive[negotiation.id] = negotiation
        self._last_consensus = state

        reached = state == ConsensusState.REACHED
        self.log.append(
            tick=self._clock.now,
            subject_id=negotiation.id,
            subject_kind=SubjectKind.NEGOTIATION,
            score=negotiation.accepts / len(negotiation.participants),
            rationale=(
                f"{negotiation.accepts} accept, {negotiation.rejects} reject, "
                f"{negotiation.pending} pending; quorum {negotiation.quorum}"
            ),
            outcome=Outcome.APPROVED if reached else Outcome.REJECTED,
            policy="quorum",
        )
        _logger.info("Negotiation %s resolved: %s", negotiation.id, state.value)

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def autonomy_level(self) -> float:
        """Exponential moving average of ethical scores."""
        return self._autonomy

    def ethical_validation(self) -> float:
        return self.log.mean_score(self.window)

    def state(self) -> SigmaState:
        return SigmaState(
            ethical_validation=self.ethical_validation(),
            autonomy_level=self.autonomy_level,
            negotiation_active=bool(self._negotiations),
            consensus_reached=self._last_consensus != ConsensusState.FAILED,
            validations=len(self.log),
            open_negotiations=len(self._negotiations),
        )
