"""
Tests for the Study Pipeline
============================

End-to-end flow with a stand-in comparison: simulate, store, aggregate.
"""

import pytest
from dataclasses import replace
from pathlib import Path

from mixsim import constants as C
from mixsim.pipeline import run_pipeline
from mixsim.storage import ResultsStore
from mixsim.validation import monte_carlo

from conftest import make_fake_compare


@pytest.mark.unit
class TestPipeline:

    def test_simulate_and_aggregate(self, monkeypatch, study_config):
        monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare(statistic=0.01))

        results = run_pipeline(study_config, verbose=False)

        result = results[C.METHOD_FREQUENTIST]
        assert result.report.rows_written == 4 * 3 * 4
        assert result.output_path == Path(study_config.results_dir) / 'error_rates_frequentist.csv'
        assert result.output_path.exists()

        rates = result.error_rates
        assert len(rates) == 16
        type_i = rates[rates['error_type'] == 'Type I']
        type_ii = rates[rates['error_type'] == 'Type II']
        assert (type_i['error_rate'] == 1.0).all()
        assert (type_ii['error_rate'] == 0.0).all()

    def test_skip_simulation_reaggregates(self, monkeypatch, study_config):
        monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare())
        run_pipeline(study_config, verbose=False)

        calls = []
        monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare(calls=calls))
        results = run_pipeline(replace(study_config, run_simulation=False), verbose=False)

        assert calls == []
        assert results[C.METHOD_FREQUENTIST].report is None
        assert (results[C.METHOD_FREQUENTIST].error_rates['n_total'] == 3).all()

    def test_skip_simulation_without_store(self, study_config):
        results = run_pipeline(replace(study_config, run_simulation=False), verbose=False)
        assert results == {}

    def test_second_run_adds_replications(self, monkeypatch, study_config):
        monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare())

        run_pipeline(study_config, verbose=False)
        results = run_pipeline(study_config, verbose=False)

        store = ResultsStore.for_method(study_config.results_dir, C.METHOD_FREQUENTIST)
        assert store.n_previous(C.REGIMES) == 6
        assert results[C.METHOD_FREQUENTIST].report.start_index == 3
        assert (results[C.METHOD_FREQUENTIST].error_rates['n_total'] == 6).all()

    def test_verbose_prints_matrix(self, monkeypatch, study_config, capsys):
        monkeypatch.setattr(monte_carlo, 'compare', make_fake_compare())

        run_pipeline(study_config, verbose=True)

        out = capsys.readouterr().out
        assert 'Error rates (frequentist)' in out
        assert 'null_both' in out
