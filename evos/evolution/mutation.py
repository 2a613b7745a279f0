"""Code mutations — seeded, reproducible variants of a generation.

A generation carries a blueprint of tunable parameters and a fitness
score. A mutation perturbs both using a `random.Random` seeded by the
caller: the same parent, rate and seed always yield the same child.
"""

from __future__ import annotations

import hashlib
import json
import random

from pydantic import BaseModel, Field

from evos.exceptions import InvalidInputError
from evos.types import GenerationId, clamp01, in_unit_interval

ROOT_ID: GenerationId = "gen-0"

ROOT_BLUEPRINT: dict[str, float] = {
    "exploration": 0.5,
    "consolidation": 0.5,
    "plasticity": 0.15,
    "ethical_weight": 0.96,
}


class Generation(BaseModel):
    """One node of the lineage tree. Immutable once created."""

    id: GenerationId
    parent_id: GenerationId | None = None
    depth: int = 0
    mutation_rate: float
    fitness: float = Field(ge=0.0, le=1.0)
    seed: int | None = None
    blueprint: dict[str, float] = Field(default_factory=dict)
    blueprint_digest: str = ""
    parent_digest: str = ""
    reason: str = ""
    validation_id: str | None = None
    created_at: int = 0

    model_config = {"frozen": True}

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


def digest(blueprint: dict[str, float]) -> str:
    return hashlib.sha256(json.dumps(blueprint, sort_keys=True).encode()).hexdigest()[:16]


def root_generation(fitness: float = 0.7, mutation_rate: float = 0.05) -> Generation:
    blueprint = dict(ROOT_BLUEPRINT)
    return Generation(
        id=ROOT_ID,
        mutation_rate=mutation_rate,
        fitness=fitness,
        blueprint=blueprint,
        blueprint_digest=digest(blueprint),
        reason="root",
    )


def mutated_fitness(parent_fitness: float, mutation_rate: float, seed: int) -> float:
    """Fitness estimate of a child, a pure function of its three inputs.

    Half the rate pulls toward 1.0 in proportion to the headroom left;
    the seeded noise term can push either way by up to the full rate.
    """
    rng = random.Random(seed)
    drift = 0.5 * mutation_rate * (1.0 - parent_fitness)
    noise = rng.uniform(-1.0, 1.0) * mutation_rate
    return clamp01(parent_fitness + drift + noise)


def mutate(parent: Generation, mutation_rate: float, seed: int, tick: int = 0) -> Generation:
    """Produce a candidate child of `parent`."""
    if not in_unit_interval(mutation_rate):
        raise InvalidInputError(f"Mutation rate {mutation_rate} not in [0, 1]")

    fitness = mutated_fitness(parent.fitness, mutation_rate, seed)

    # Separate stream so the blueprint never feeds back into fitness.
    rng = random.Random(f"{seed}:{parent.id}")
    blueprint = {
        name: round(clamp01(value + rng.gauss(0.0, mutation_rate)), 6)
        for name, value in sorted(parent.blueprint.items())
    }
    key = hashlib.sha256(f"{parent.id}|{mutation_rate!r}|{seed}".encode()).hexdigest()[:8]

    return Generation(
        id=f"gen-{parent.depth + 1}-{key}",
        parent_id=parent.id,
        depth=parent.depth + 1,
        mutation_rate=mutation_rate,
        fitness=fitness,
        seed=seed,
        blueprint=blueprint,
        blueprint_digest=digest(blueprint),
        parent_digest=parent.blueprint_digest,
        reason=(
            f"rate={mutation_rate} seed={seed}: "
            f"fitness {parent.fitness:.3f} -> {fitness:.3f}"
        ),
        created_at=tick,
    )
