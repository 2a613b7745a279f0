"""Scoring policies — how the Sigma gate turns a proposal into a score.

A policy looks only at the attributes a proposal declares about itself
and returns a score in [0, 1], a rationale, and the attribute values it
would need to see for the proposal to pass in full. The gate maps the
score onto an outcome; policies never decide outcomes themselves.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, Literal

from pydantic import BaseModel, Field

from evos.types import SubjectKind, clamp01, new_id

AttributeValue = float | bool | str


class Proposal(BaseModel):
    """An action, agent request or code mutation awaiting validation."""

    id: str = Field(default_factory=new_id)
    subject_id: str
    subject_kind: SubjectKind = SubjectKind.ACTION
    description: str = ""
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)


class PolicyScore(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    amendments: dict[str, Any] = Field(default_factory=dict)


class ScoringPolicy(ABC):
    """Abstract base for a pluggable ethical policy."""

    name: str = "policy"

    @abstractmethod
    def evaluate(self, proposal: Proposal) -> PolicyScore:
        """Score a proposal."""
        ...


# ── Rule-based ───────────────────────────────────────────────────────────────


RuleOp = Literal["min", "max", "eq", "require", "forbid"]


class PolicyRule(BaseModel):
    """One weighted condition on a declared attribute.

    min/max compare numerically, eq compares exactly, require needs a
    truthy value and forbid needs the attribute absent or falsy.
    """

    attribute: str
    op: RuleOp = "min"
    value: AttributeValue | None = None
    weight: float = Field(1.0, gt=0.0)
    description: str = ""

    def check(self, attributes: dict[str, AttributeValue]) -> bool:
        present = self.attribute in attributes
        actual = attributes.get(self.attribute)
        if self.op == "forbid":
            return not actual
        if not present:
            return False
        if self.op == "require":
            return bool(actual)
        if self.op == "eq":
            return actual == self.value
        number = _as_number(actual)
        if number is None or self.value is None:
            return False
        if self.op == "min":
            return number >= float(self.value)
        return number <= float(self.value)

    def remedy(self) -> AttributeValue:
        """The attribute value that would satisfy this rule."""
        if self.op == "require":
            return True
        if self.op == "forbid":
            return False
        return self.value

    def label(self) -> str:
        return self.description or f"{self.attribute} {self.op} {self.value}"


class RuleBasedPolicy(ScoringPolicy):
    """Score = weight of satisfied rules / total weight."""

    def __init__(self, rules: list[PolicyRule], name: str = "rule-based") -> None:
        self.rules = list(rules)
        self.name = name

    def evaluate(self, proposal: Proposal) -> PolicyScore:
        if not self.rules:
            return PolicyScore(score=1.0, rationale="no rules configured")
        total = sum(r.weight for r in self.rules)
        failed = [r for r in self.rules if not r.check(proposal.attributes)]
        passed = total - sum(r.weight for r in failed)
        if failed:
            rationale = "failed: " + "; ".join(r.label() for r in failed)
        else:
            rationale = f"all {len(self.rules)} rules satisfied"
        return PolicyScore(
            score=clamp01(passed / total),
            rationale=rationale,
            amendments={r.attribute: r.remedy() for r in failed},
        )


# ── Weighted score ───────────────────────────────────────────────────────────


class WeightedScorePolicy(ScoringPolicy):
    """Score = weighted mean of numeric attributes, each clamped to [0, 1].

    Booleans count as 1.0/0.0; missing or non-numeric attributes count
    as `missing`. Attributes under `floor` are returned as amendments.
    """

    def __init__(
        self,
        weights: dict[str, float],
        name: str = "weighted-score",
        missing: float = 0.0,
        floor: float = 0.5,
    ) -> None:
        if not weights or any(w <= 0 for w in weights.values()):
            raise ValueError("weights must be non-empty and positive")
        self.weights = dict(weights)
        self.name = name
        self.missing = missing
        self.floor = floor

    def evaluate(self, proposal: Proposal) -> PolicyScore:
        total = sum(self.weights.values())
        parts: dict[str, float] = {}
        for attribute in self.weights:
            number = _as_number(proposal.attributes.get(attribute))
            parts[attribute] = clamp01(self.missing if number is None else number)
        score = sum(self.weights[a] * v for a, v in parts.items()) / total
        weak = {a: self.floor for a, v in parts.items() if v < self.floor}
        rationale = ", ".join(f"{a}={v:.2f}" for a, v in parts.items())
        return PolicyScore(score=clamp01(score), rationale=rationale, amendments=weak)


# ── Presets ──────────────────────────────────────────────────────────────────


def ethics_policy() -> RuleBasedPolicy:
    """Default policy for agent and action proposals."""
    return RuleBasedPolicy(
        [
            PolicyRule(attribute="ethical_alignment", op="min", value=0.9, weight=3.0),
            PolicyRule(attribute="harm", op="forbid", weight=3.0, description="no declared harm"),
            PolicyRule(attribute="transparency", op="min", value=0.5, weight=1.0),
            PolicyRule(attribute="reversible", op="require", weight=1.0),
        ],
        name="sigma-ethics",
    )


def evolution_policy() -> RuleBasedPolicy:
    """Default policy for code mutations."""
    return RuleBasedPolicy(
        [
            PolicyRule(attribute="fitness_delta", op="min", value=0.0, weight=2.0,
                       description="no fitness regression"),
            PolicyRule(attribute="fitness", op="min", value=0.5, weight=2.0),
            PolicyRule(attribute="mutation_rate", op="max", value=0.2, weight=1.0),
            PolicyRule(attribute="harm", op="forbid", weight=1.0, description="no declared harm"),
        ],
        name="infinigen-evolution",
    )


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)) and not math.isnan(value):
        return float(value)
    return None
