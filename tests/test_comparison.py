"""
Tests for the Comparison Engine
===============================

Tests for the four null-model comparisons on one dataset.
"""

import math
import pytest
import numpy as np

from mixsim import constants as C
from mixsim.analysis.comparison import (
    COMPARISONS,
    ComparisonResult,
    ReplicationOutcome,
    build_templates,
    compare,
)
from mixsim.estimation import bridge_sampling
from mixsim.estimation.bridge_sampling import BridgeResult
from mixsim.estimation.fits import FittingFailure, CAUSE_BRIDGE, CAUSE_DIVERGENCE
from mixsim.estimation.formulas import ModelSpec
from mixsim.estimation.frequentist import FrequentistTemplate


class FakeFit:
    def __init__(self, spec):
        self.spec = spec


class FakeTemplate:
    """Bayesian-style template that records its calls."""

    def __init__(self, spec, fail=False):
        self.spec = spec
        self.fail = fail
        self.seeds = []

    def fit(self, dataset, random_seed=None):
        self.seeds.append(random_seed)
        if self.fail:
            return FittingFailure(CAUSE_DIVERGENCE, '3 divergent transitions', self.spec)
        return FakeFit(self.spec)


def fake_templates(fail_spec=None):
    return {spec: FakeTemplate(spec, fail=spec is fail_spec)
            for spec in (ModelSpec.FULL, ModelSpec.A, ModelSpec.B, ModelSpec.C1)}


def patch_logml(monkeypatch, logml, converged=True):
    def fake_logml(fit, rng=None, maxiter=None, tol=None):
        return BridgeResult(logml[fit.spec], 5, converged, 10, 10)
    monkeypatch.setattr(bridge_sampling, 'log_marginal_likelihood', fake_logml)


@pytest.mark.unit
class TestComparisonTable:
    """Tests for the label -> (alternative, null) table."""

    def test_labels_in_order(self):
        assert tuple(label for label, _, _ in COMPARISONS) == C.NULL_MODEL_LABELS

    def test_c2_compares_c1_against_a(self):
        label, alternative, null = COMPARISONS[3]
        assert label == 'C2'
        assert alternative is ModelSpec.C1
        assert null is ModelSpec.A

    def test_first_three_use_full_as_alternative(self):
        assert all(alt is ModelSpec.FULL for _, alt, _ in COMPARISONS[:3])


@pytest.mark.unit
class TestReplicationOutcome:
    """Tests for the per-replication result type."""

    def test_failed_yields_four_missing_rows(self):
        outcome = ReplicationOutcome.failed(
            C.REGIME_NULL_FE, C.METHOD_BAYESIAN, 7, FittingFailure(CAUSE_DIVERGENCE)
        )
        rows = outcome.to_rows()

        assert not outcome.ok
        assert [r.null_model for r in rows] == list(C.NULL_MODEL_LABELS)
        assert all(r.missing for r in rows)
        assert all(r.regime == C.REGIME_NULL_FE and r.seed == 7 for r in rows)

    def test_ok_rows_pass_through(self):
        results = [ComparisonResult(C.REGIME_NULL_RE, label, 0.2, C.METHOD_FREQUENTIST)
                   for label in C.NULL_MODEL_LABELS]
        outcome = ReplicationOutcome(C.REGIME_NULL_RE, C.METHOD_FREQUENTIST, results=results)

        assert outcome.ok
        assert outcome.to_rows() == results
        assert not any(r.missing for r in results)


@pytest.mark.unit
class TestBayesianComparison:
    """Bayes factors from (faked) marginal likelihoods."""

    def test_bayes_factors_orientation(self, monkeypatch, null_re_data):
        patch_logml(monkeypatch, {
            ModelSpec.FULL: 10.0, ModelSpec.A: 8.0, ModelSpec.B: 9.5, ModelSpec.C1: 9.0,
        })
        templates = fake_templates()

        outcome = compare(null_re_data, C.METHOD_BAYESIAN, C.REGIME_NULL_RE,
                          templates=templates, seed=3)

        assert outcome.ok
        bfs = {r.null_model: r.statistic for r in outcome.results}
        assert bfs['A'] == pytest.approx(math.exp(2.0))
        assert bfs['B'] == pytest.approx(math.exp(0.5))
        assert bfs['C1'] == pytest.approx(math.exp(1.0))
        assert bfs['C2'] == pytest.approx(math.exp(1.0))
        assert all(r.method == C.METHOD_BAYESIAN and r.seed == 3 for r in outcome.results)

    def test_seed_reaches_sampler(self, monkeypatch, null_re_data):
        patch_logml(monkeypatch, {spec: 0.0 for spec in ModelSpec})
        templates = fake_templates()

        compare(null_re_data, C.METHOD_BAYESIAN, C.REGIME_NULL_RE, templates=templates, seed=42)

        assert all(t.seeds == [42] for t in templates.values())

    def test_overwhelming_evidence_is_infinite(self, monkeypatch, null_re_data):
        patch_logml(monkeypatch, {
            ModelSpec.FULL: 2000.0, ModelSpec.A: 0.0, ModelSpec.B: 0.0, ModelSpec.C1: 0.0,
        })
        outcome = compare(null_re_data, C.METHOD_BAYESIAN, C.REGIME_NULL_RE,
                          templates=fake_templates(), seed=1)

        bfs = {r.null_model: r.statistic for r in outcome.results}
        assert bfs['A'] == math.inf
        assert bfs['C2'] == pytest.approx(1.0)

    def test_fit_failure_fails_replication(self, monkeypatch, null_re_data):
        patch_logml(monkeypatch, {spec: 0.0 for spec in ModelSpec})

        outcome = compare(null_re_data, C.METHOD_BAYESIAN, C.REGIME_NULL_RE,
                          templates=fake_templates(fail_spec=ModelSpec.B), seed=1)

        assert not outcome.ok
        assert outcome.failure.cause == CAUSE_DIVERGENCE
        assert outcome.failure.spec is ModelSpec.B
        assert all(math.isnan(r.statistic) for r in outcome.to_rows())

    def test_bridge_failure_fails_replication(self, monkeypatch, null_re_data):
        patch_logml(monkeypatch, {spec: 0.0 for spec in ModelSpec}, converged=False)

        outcome = compare(null_re_data, C.METHOD_BAYESIAN, C.REGIME_NULL_RE,
                          templates=fake_templates(), seed=1)

        assert not outcome.ok
        assert outcome.failure.cause == CAUSE_BRIDGE


@pytest.mark.unit
class TestTemplates:

    def test_frequentist_templates(self, study_config):
        templates = build_templates(C.METHOD_FREQUENTIST, study_config)
        assert set(templates) == {ModelSpec.FULL, ModelSpec.A, ModelSpec.B, ModelSpec.C1}
        assert all(isinstance(t, FrequentistTemplate) for t in templates.values())

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            build_templates('bootstrap')

    def test_compare_unknown_method(self, null_re_data):
        with pytest.raises(ValueError):
            compare(null_re_data, 'bootstrap', C.REGIME_NULL_RE)


@pytest.mark.estimation
class TestFrequentistComparison:
    """Real LR tests on one simulated dataset."""

    def test_four_p_values(self, null_re_data):
        outcome = compare(null_re_data, C.METHOD_FREQUENTIST, C.REGIME_NULL_RE, seed=11)

        assert outcome.ok, str(outcome.failure)
        rows = outcome.to_rows()
        assert [r.null_model for r in rows] == list(C.NULL_MODEL_LABELS)
        assert all(0.0 <= r.statistic <= 1.0 for r in rows)
        assert all(r.regime == C.REGIME_NULL_RE for r in rows)

    def test_null_both_yields_no_missing_rows(self, null_both_data):
        outcome = compare(null_both_data, C.METHOD_FREQUENTIST, C.REGIME_NULL_BOTH, seed=1)

        assert outcome.ok, str(outcome.failure)
        assert not any(r.missing for r in outcome.to_rows())
        assert all(math.isfinite(r.statistic) for r in outcome.results)

    def test_fixed_effect_rejects_fixed_nulls(self, null_re_data):
        outcome = compare(null_re_data, C.METHOD_FREQUENTIST, C.REGIME_NULL_RE, seed=11)
        p = {r.null_model: r.statistic for r in outcome.results}

        # Dataset has a 0.5 condition effect: nulls without it must be rejected
        assert p['A'] < 0.05
        assert p['C2'] < 0.05

    def test_failing_template_gives_missing_rows(self, null_re_data):
        class Failing:
            def fit(self, dataset):
                return FittingFailure('non-convergence', 'forced')

        templates = build_templates(C.METHOD_FREQUENTIST)
        templates[ModelSpec.C1] = Failing()

        outcome = compare(null_re_data, C.METHOD_FREQUENTIST, C.REGIME_NULL_RE,
                          templates=templates, seed=11)

        assert not outcome.ok
        assert len(outcome.to_rows()) == 4
        assert all(r.missing for r in outcome.to_rows())
