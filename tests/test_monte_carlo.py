"""
Tests for the Simulation Driver
===============================

Uses a stand-in comparison so the driver logic (seed ranges, missing
replications, per-regime checkpoints) runs without fitting models.
"""

import pytest
import numpy as np

from mixsim import constants as C
from mixsim.simulation.dgp import GenerationError
from mixsim.storage import PersistenceError, ResultsStore
from mixsim.validation import monte_carlo
from mixsim.validation.monte_carlo import SimulationStudy, run_replication, run_study

from conftest import make_fake_compare


@pytest.fixture
def calls():
    return []


@pytest.fixture
def fake_compare(monkeypatch, calls):
    monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare(calls=calls))
    return calls


@pytest.mark.unit
class TestRunReplication:
    """Tests for one replication."""

    def test_ok(self, fake_compare, study_config):
        outcome = run_replication(C.REGIME_NULL_BOTH, 5, C.METHOD_FREQUENTIST,
                                  study_config.simulation, templates={})
        assert outcome.ok
        assert len(outcome.to_rows()) == 4
        assert fake_compare == [(C.REGIME_NULL_BOTH, 5, 480)]

    def test_unexpected_exception_becomes_missing(self, monkeypatch, study_config):
        monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare(raise_seeds={3}))

        outcome = run_replication(C.REGIME_NULL_FE, 3, C.METHOD_FREQUENTIST,
                                  study_config.simulation, templates={})

        assert not outcome.ok
        assert outcome.failure.cause == 'replication-error'
        assert 'boom at seed 3' in outcome.failure.detail

    def test_generation_error_propagates(self, fake_compare, study_config):
        with pytest.raises(GenerationError):
            run_replication('null_other', 1, C.METHOD_FREQUENTIST,
                            study_config.simulation, templates={})


@pytest.mark.unit
class TestRunStudy:
    """Tests for the driver with a fake comparison."""

    def test_first_run_uses_seeds_from_one(self, fake_compare, study_config, p_store):
        report = run_study(C.REGIMES, 3, C.METHOD_FREQUENTIST, config=study_config,
                           store=p_store, n_workers=1, verbose=False)

        assert report.start_index == 0
        assert all(report.seeds[r] == [1, 2, 3] for r in C.REGIMES)
        assert report.rows_written == 4 * 3 * 4
        assert len(p_store.read()) == 48

    def test_rerun_continues_seeds(self, fake_compare, study_config, p_store):
        first = run_study(C.REGIMES, 3, C.METHOD_FREQUENTIST, config=study_config,
                          store=p_store, n_workers=1, verbose=False)
        second = run_study(C.REGIMES, 3, C.METHOD_FREQUENTIST, config=study_config,
                           store=p_store, n_workers=1, verbose=False)

        assert second.start_index == 3
        assert second.seeds[C.REGIME_NULL_NONE] == [4, 5, 6]
        used = [seed for regime, seed, _ in fake_compare if regime == C.REGIME_NULL_BOTH]
        assert used == [1, 2, 3, 4, 5, 6]
        assert len(p_store.read()) == 96
        assert set(first.seeds[C.REGIME_NULL_RE]).isdisjoint(second.seeds[C.REGIME_NULL_RE])

    def test_explicit_start_index(self, fake_compare, study_config, p_store):
        report = run_study([C.REGIME_NULL_RE], 2, C.METHOD_FREQUENTIST, start_index=10,
                           config=study_config, store=p_store, n_workers=1, verbose=False)
        assert report.seeds[C.REGIME_NULL_RE] == [11, 12]

    def test_regimes_processed_in_given_order(self, fake_compare, study_config, p_store):
        order = [C.REGIME_NULL_NONE, C.REGIME_NULL_BOTH]
        run_study(order, 2, C.METHOD_FREQUENTIST, config=study_config,
                  store=p_store, n_workers=1, verbose=False)

        assert [regime for regime, _, _ in fake_compare] == [
            C.REGIME_NULL_NONE, C.REGIME_NULL_NONE, C.REGIME_NULL_BOTH, C.REGIME_NULL_BOTH,
        ]
        assert p_store.read()['data_structure'].tolist()[0] == C.REGIME_NULL_NONE

    def test_failed_replication_gives_one_missing_group(self, monkeypatch, study_config, p_store):
        monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare(fail_seeds={2}))

        report = run_study([C.REGIME_NULL_FE], 3, C.METHOD_FREQUENTIST, config=study_config,
                           store=p_store, n_workers=1, verbose=False)

        df = p_store.read()
        assert len(df) == 12
        assert df['p.value'].isna().sum() == 4
        assert df['p.value'].iloc[4:8].isna().all()
        assert report.counts[C.REGIME_NULL_FE] == {'ok': 2, 'missing': 1}
        assert report.n_missing == 1
        assert 'non-convergence' in report.failures[C.REGIME_NULL_FE][0]

    def test_exception_does_not_stop_batch(self, monkeypatch, study_config, p_store):
        monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare(raise_seeds={1}))

        report = run_study([C.REGIME_NULL_RE], 3, C.METHOD_FREQUENTIST, config=study_config,
                           store=p_store, n_workers=1, verbose=False)

        assert report.counts[C.REGIME_NULL_RE] == {'ok': 2, 'missing': 1}
        assert len(p_store.read()) == 12

    def test_unknown_regime_aborts_before_writing(self, fake_compare, study_config, p_store):
        with pytest.raises(GenerationError):
            run_study([C.REGIME_NULL_BOTH, 'null_other'], 2, C.METHOD_FREQUENTIST,
                      config=study_config, store=p_store, n_workers=1, verbose=False)
        assert not p_store.exists()
        assert fake_compare == []

    def test_completed_regimes_survive_a_fatal_error(self, monkeypatch, study_config, p_store):
        def compare_then_fail(dataset, method, regime, templates=None, seed=None, **kwargs):
            if regime == C.REGIME_NULL_RE:
                raise GenerationError("bad generation settings")
            return make_fake_compare()(dataset, method, regime, templates, seed)

        monkeypatch.setattr(monte_carlo, 'compare', compare_then_fail)

        with pytest.raises(GenerationError):
            run_study(C.REGIMES, 2, C.METHOD_FREQUENTIST, config=study_config,
                      store=p_store, n_workers=1, verbose=False)

        df = p_store.read()
        assert set(df['data_structure']) == {C.REGIME_NULL_BOTH}
        assert len(df) == 8

    def test_persistence_error_propagates(self, fake_compare, study_config, tmp_path):
        directory = tmp_path / 'p_results.csv'
        directory.mkdir()
        store = ResultsStore(directory, C.COL_P_VALUE)

        with pytest.raises(PersistenceError):
            run_study([C.REGIME_NULL_BOTH], 1, C.METHOD_FREQUENTIST, start_index=0,
                      config=study_config, store=store, n_workers=1, verbose=False)

    def test_invalid_arguments(self, study_config):
        with pytest.raises(ValueError):
            run_study(C.REGIMES, 0, C.METHOD_FREQUENTIST, config=study_config)
        with pytest.raises(ValueError):
            run_study(C.REGIMES, 1, C.METHOD_FREQUENTIST)
        with pytest.raises(ValueError):
            SimulationStudy(study_config, 'bootstrap')

    def test_default_store_in_results_dir(self, study_config):
        study = SimulationStudy(study_config, C.METHOD_FREQUENTIST, verbose=False)
        assert str(study.store.path).startswith(study_config.results_dir)
        assert study.store.path.name == C.P_RESULTS_FILE


@pytest.mark.estimation
class TestParallelDriver:
    """Real fits through the process pool."""

    def test_parallel_matches_sequential(self, study_config, tmp_path):
        parallel_store = ResultsStore(tmp_path / 'parallel.csv', C.COL_P_VALUE)
        sequential_store = ResultsStore(tmp_path / 'sequential.csv', C.COL_P_VALUE)

        run_study([C.REGIME_NULL_RE], 2, C.METHOD_FREQUENTIST, config=study_config,
                  store=parallel_store, n_workers=2, verbose=False)
        run_study([C.REGIME_NULL_RE], 2, C.METHOD_FREQUENTIST, config=study_config,
                  store=sequential_store, n_workers=1, verbose=False)

        parallel = parallel_store.read()
        sequential = sequential_store.read()
        assert len(parallel) == 8
        # NaN == NaN under assert_allclose, so missing rows would compare equal
        assert parallel[C.COL_P_VALUE].notna().all()
        assert sequential[C.COL_P_VALUE].notna().all()
        np.testing.assert_allclose(parallel[C.COL_P_VALUE], sequential[C.COL_P_VALUE], rtol=1e-6)
