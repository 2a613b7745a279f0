"""Evolution Loop — mutation proposals gated by the Sigma gate.

Candidates are cheap, pure values; only submission touches shared
state. Submission uses optimistic concurrency on the lineage head: the
caller names the generation it expects to be current, and a stale
expectation fails instead of adopting a child of an outdated parent.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from evos.clock import LogicalClock
from evos.evolution.lineage import Ancestry, LineageTree
from evos.evolution.mutation import Generation, mutate, root_generation
from evos.exceptions import InvalidInputError, StaleParentError
from evos.sigma.gate import SigmaGate, ValidationResult
from evos.sigma.policy import Proposal, ScoringPolicy, evolution_policy
from evos.types import GenerationId, GenerationStatus, SubjectKind

_logger = logging.getLogger(__name__)


class SubmissionResult(BaseModel):
    generation: Generation
    validation: ValidationResult
    adopted: bool

    model_config = {"frozen": True}


class EvolutionLoop:
    """Lineage of code mutations with gated adoption.

    Usage:
        loop = EvolutionLoop(gate)
        candidate = loop.propose_mutation(loop.current.id, 0.05, seed=42)
        result = loop.submit_for_validation(candidate)
    """

    def __init__(
        self,
        gate: SigmaGate,
        policy: ScoringPolicy | None = None,
        clock: LogicalClock | None = None,
        root_fitness: float = 0.7,
        root_mutation_rate: float = 0.05,
    ) -> None:
        self._gate = gate
        self.policy = policy or evolution_policy()
        self._clock = clock if clock is not None else LogicalClock()
        self.lineage = LineageTree(root_generation(root_fitness, root_mutation_rate))

    @property
    def current(self) -> Generation:
        return self.lineage.get(self.lineage.current_id)

    def get(self, generation_id: GenerationId) -> Generation:
        return self.lineage.get(generation_id)

    def propose_mutation(
        self,
        parent_generation_id: GenerationId,
        mutation_rate: float,
        seed: int,
    ) -> Generation:
        """Build a candidate child. Nothing is recorded until submission."""
        parent = self.lineage.get(parent_generation_id)
        return mutate(parent, mutation_rate, seed, tick=self._clock.now)

    def submit_for_validation(
        self,
        candidate: Generation,
        policy: ScoringPolicy | None = None,
        expected_current: GenerationId | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> SubmissionResult:
        """Route a candidate through the gate and adopt or archive it.

        A child may only be adopted while its parent is still the head.
        `expected_current`, when given, must name that same head.
        """
        head = self.lineage.current_id
        expected = expected_current if expected_current is not None else candidate.parent_id
        if head != expected or candidate.parent_id != head:
            raise StaleParentError(
                f"Current generation is {head}, expected {expected}, "
                f"candidate {candidate.id} descends from {candidate.parent_id}"
            )
        if candidate.id in self.lineage:
            raise InvalidInputError(f"Generation {candidate.id} was already submitted")
        parent = self.lineage.get(candidate.parent_id)

        proposal = Proposal(
            subject_id=candidate.id,
            subject_kind=SubjectKind.MUTATION,
            description=candidate.reason,
            attributes={
                "fitness": candidate.fitness,
                "parent_fitness": parent.fitness,
                "fitness_delta": candidate.fitness - parent.fitness,
                "mutation_rate": candidate.mutation_rate,
                **(attributes or {}),
            },
            payload={
                "generation_id": candidate.id,
                "parent_id": candidate.parent_id,
                "blueprint": dict(candidate.blueprint),
            },
        )
        validation = self._gate.validate(proposal, policy or self.policy)
        generation = candidate.model_copy(update={"validation_id": validation.record.id})

        if validation.passed:
            self.lineage.add(generation.model_copy(deep=True), GenerationStatus.CANDIDATE)
            self.lineage.advance(generation.id)
            _logger.info(
                "Adopted generation %s (fitness %.3f, %s)",
                generation.id, generation.fitness, validation.outcome.value,
            )
        else:
            self.lineage.add(generation.model_copy(deep=True), GenerationStatus.REJECTED)
            _logger.warning(
                "Archived rejected generation %s (score %.3f)",
                generation.id, validation.score,
            )
        return SubmissionResult(generation=generation, validation=validation, adopted=validation.passed)

    def history(self, generation_id: GenerationId) -> Ancestry:
        """Ancestors from `generation_id` back to the root, lazily."""
        return self.lineage.history(generation_id)

    def lineage_fitness(self, n: int) -> list[float]:
        """Fitness of the last `n` generations on the current line, oldest first."""
        if n <= 0:
            return []
        recent = []
        for generation in self.history(self.lineage.current_id):
            recent.append(generation.fitness)
            if len(recent) == n:
                break
        return list(reversed(recent))
