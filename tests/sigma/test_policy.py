"""Tests for scoring policies."""

import pytest

from evos.sigma.policy import (
    PolicyRule,
    Proposal,
    RuleBasedPolicy,
    WeightedScorePolicy,
    ethics_policy,
    evolution_policy,
)


def _proposal(**attributes):
    return Proposal(subject_id="a1", attributes=attributes)


def test_rule_based_all_satisfied():
    policy = RuleBasedPolicy([
        PolicyRule(attribute="alignment", op="min", value=0.9),
        PolicyRule(attribute="harm", op="forbid"),
    ])
    score = policy.evaluate(_proposal(alignment=0.95))
    assert score.score == 1.0
    assert score.amendments == {}
    assert "all 2 rules" in score.rationale


def test_rule_based_weighted_failures_and_amendments():
    policy = RuleBasedPolicy([
        PolicyRule(attribute="alignment", op="min", value=0.9, weight=3.0),
        PolicyRule(attribute="cost", op="max", value=10, weight=1.0),
        PolicyRule(attribute="reversible", op="require", weight=1.0),
    ])
    score = policy.evaluate(_proposal(alignment=0.95, cost=20))
    assert score.score == pytest.approx(3 / 5)
    assert score.amendments == {"cost": 10, "reversible": True}
    assert "failed" in score.rationale


def test_rule_ops():
    attrs = {"mode": "safe", "flag": True, "level": 0.4}
    assert PolicyRule(attribute="mode", op="eq", value="safe").check(attrs)
    assert not PolicyRule(attribute="mode", op="eq", value="fast").check(attrs)
    assert PolicyRule(attribute="flag", op="require").check(attrs)
    assert not PolicyRule(attribute="flag", op="forbid").check(attrs)
    assert PolicyRule(attribute="absent", op="forbid").check(attrs)
    assert not PolicyRule(attribute="absent", op="min", value=0.0).check(attrs)
    assert not PolicyRule(attribute="mode", op="min", value=0.0).check(attrs)
    assert PolicyRule(attribute="level", op="max", value=0.5).check(attrs)


def test_rule_based_without_rules():
    assert RuleBasedPolicy([]).evaluate(_proposal()).score == 1.0


def test_weighted_score():
    policy = WeightedScorePolicy({"safety": 3.0, "utility": 1.0})
    score = policy.evaluate(_proposal(safety=1.0, utility=0.2))
    assert score.score == pytest.approx((3.0 + 0.2) / 4)
    assert score.amendments == {"utility": 0.5}


def test_weighted_score_clamps_and_defaults():
    policy = WeightedScorePolicy({"safety": 1.0, "utility": 1.0}, missing=0.5)
    score = policy.evaluate(_proposal(safety=7.0, utility=float("nan")))
    assert score.score == pytest.approx(0.75)


def test_weighted_score_requires_weights():
    with pytest.raises(ValueError):
        WeightedScorePolicy({})
    with pytest.raises(ValueError):
        WeightedScorePolicy({"a": 0.0})


def test_ethics_policy_rejects_empty_proposal():
    assert ethics_policy().evaluate(_proposal()).score < 0.6


def test_ethics_policy_accepts_clean_proposal():
    score = ethics_policy().evaluate(
        _proposal(ethical_alignment=0.96, transparency=0.8, reversible=True)
    )
    assert score.score == 1.0


def test_evolution_policy_penalises_regression():
    policy = evolution_policy()
    improving = policy.evaluate(_proposal(fitness=0.8, fitness_delta=0.02, mutation_rate=0.05))
    regressing = policy.evaluate(_proposal(fitness=0.8, fitness_delta=-0.02, mutation_rate=0.05))
    assert improving.score == 1.0
    assert regressing.score == pytest.approx(4 / 6)
